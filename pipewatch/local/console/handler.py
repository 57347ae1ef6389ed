import logging
from typing import Optional

from pipewatch.local.config import SupervisorConfig
from pipewatch.local.errors import StatusParseError
from pipewatch.local.status import StatusReader, StatusRecord

log = logging.getLogger(__name__)


def _field(value) -> str:
    return "N/A" if value is None or value == "" else str(value)


def render_status(record: Optional[StatusRecord]) -> str:
    """Renders a status record as the block printed by `--status`."""
    if record is None:
        return "No pipeline state found"

    lines = [
        "",
        "Pipeline State",
        "─" * 60,
        f"Status:          {_field(record.status)}",
        f"Feature:         {record.feature}",
        f"Current Step:    {_field(record.current_step)}",
        f"Started:         {_field(record.raw.get('started_at'))}",
        f"Last Update:     {_field(record.raw.get('last_update'))}",
        f"Exit Code:       {_field(record.exit_code)}",
        f"PID:             {_field(record.pid)}",
    ]
    if record.progress.completed:
        completed = [s for s in record.progress.steps if s in record.progress.completed]
        completed += sorted(record.progress.completed - set(completed))
        lines.append(f"Steps Completed: {', '.join(completed)}")
    if record.duration is not None:
        minutes, seconds = divmod(record.duration, 60)
        lines.append(f"Duration:        {minutes}m {seconds}s")
    lines.append("─" * 60)
    lines.append("")
    return "\n".join(lines)


def display_status(config: SupervisorConfig) -> int:
    """Prints the current status record. Returns the process exit code."""
    try:
        record = StatusReader(config.state_file).read()
    except StatusParseError as e:
        log.error(f"Failed to read state: {e}")
        record = None
    print(render_status(record))
    return 0


def print_help() -> int:
    """Prints the main help text for the command line."""
    print("\npipewatch - pipeline supervisor\n")
    print("Usage:")
    print("  pipewatch [monitor]              - Monitor the current pipeline (runs until interrupted).")
    print("  pipewatch --features <a,b,c>     - Run features sequentially, stop at the first failure.")
    print("  pipewatch --once                 - Check the pipeline state once and exit.")
    print("  pipewatch --status               - Print the current pipeline state.")
    print("  pipewatch --help                 - Show this help.")
    print("  Add --verbose to any command for DEBUG console output.")
    print("\nConfiguration:")
    print("  Set in pipeline.yaml (e.g. under a 'supervisor' section) or via environment variables:")
    print("  - TELEGRAM_BOT_TOKEN             Bot token")
    print("  - TELEGRAM_CHAT_ID               Chat/group ID")
    print("  - PIPELINE_PROJECT_NAME          Project name in messages (default: Pipeline)")
    print("  - PIPEWATCH_POLL_INTERVAL        Seconds between checks")
    print("  - PIPEWATCH_MAX_RESTARTS         Automatic restarts before giving up")
    print("  - PIPEWATCH_STALL_TIMEOUT_MINUTES  Minutes without updates before a run is stalled")
    print("  - PIPEWATCH_BACKOFF_MINUTES      Comma list of token-exhaustion waits")
    print()
    return 0
