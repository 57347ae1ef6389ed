import logging
import setproctitle
from typing import List

import pipewatch.settings as default_settings
from pipewatch.local.config import SupervisorConfig
from pipewatch.local.console.handler import display_status, print_help
from pipewatch.local.supervisor import QueueRunner, Supervisor

log = logging.getLogger(__name__)


def parse_features(args: List[str]) -> List[str]:
    """Splits `a,b, c` (possibly spread over several arguments) into feature names."""
    return [f.strip() for arg in args for f in arg.split(",") if f.strip()]


def run_monitor(config: SupervisorConfig) -> int:
    setproctitle.setproctitle(default_settings.PROCESS_TITLE)
    Supervisor(config).supervision_loop()
    return 0


def run_once(config: SupervisorConfig) -> int:
    Supervisor(config).run_once()
    return 0


def run_features(config: SupervisorConfig, args: List[str]) -> int:
    features = parse_features(args)
    if not features:
        log.error("No features given. Usage: --features a,b,c")
        return 2
    # An aborted queue is a normal outcome; its notifications already report it.
    QueueRunner(Supervisor(config)).run(features)
    return 0


def execute_command(command: str, args: List[str], config: SupervisorConfig) -> int:
    """
    Executes a single command.

    :param command: The command name ('monitor', 'once', 'status', 'features', 'help').
    :param args: Arguments for the command.
    :param config: The resolved supervisor configuration.
    :return: The process exit code.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "monitor": lambda: run_monitor(config),
        "once": lambda: run_once(config),
        "status": lambda: display_status(config),
        "features": lambda: run_features(config, args),
        "help": print_help,
    }

    if command in command_map:
        return command_map[command]()

    log.info(f"Unknown command: '{command}'. Use --help for a list of commands.")
    print_help()
    return 2
