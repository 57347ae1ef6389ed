import sys
import logging
from typing import List, Optional, Tuple

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

from pipewatch.log.setup import setup_logging
from pipewatch.local.config import load_config
from pipewatch.local.errors import ConfigError
from pipewatch.local.console import execute_command, print_help

FLAG_COMMANDS = {
    "--help": "help",
    "-h": "help",
    "--status": "status",
    "--once": "once",
    "--features": "features",
}


def parse_argv(argv: List[str]) -> Tuple[str, List[str], bool]:
    """
    Turns the raw argument list into (command, command args, verbose).
    `--help` wins over everything, then `--status`, `--once` and `--features`;
    with no command the supervisor monitors.
    """
    args = list(argv)
    verbose = "--verbose" in args
    args = [a for a in args if a != "--verbose"]

    for flag in ("--help", "-h", "--status", "--once"):
        if flag in args:
            return FLAG_COMMANDS[flag], [], verbose

    if "--features" in args:
        idx = args.index("--features")
        return "features", args[idx + 1:idx + 2], verbose

    if not args:
        return "monitor", [], verbose
    return args[0].lower(), args[1:], verbose


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the command line."""
    command, args, verbose = parse_argv(sys.argv[1:] if argv is None else argv)

    if command == "help":
        return print_help()

    try:
        config = load_config()
    except ConfigError as e:
        log.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(logging.DEBUG if verbose else logging.INFO, config.log_file)

    try:
        return execute_command(command, args, config)
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
