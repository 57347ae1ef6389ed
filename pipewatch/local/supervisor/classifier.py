from enum import Enum
from datetime import datetime
from typing import Optional
from pipewatch.local.status import StatusRecord

EXIT_TOKEN_EXHAUSTED = 75
EXIT_TOOL_FAILURE = 76
EXIT_FATAL = 99

FAILURE_STATUSES = frozenset({"failed", "token_exhausted", "tool_failure", "fatal"})


class Action(str, Enum):
    NOOP = "noop"
    COMPLETED = "completed"
    GENERIC_FAILURE = "generic_failure"
    TOKEN_EXHAUSTED = "token_exhausted"
    TOOL_FAILURE = "tool_failure"
    FATAL = "fatal"
    STALE_RUNNING = "stale_running"
    RUNNING = "running"
    UNRECOGNIZED = "unrecognized"


# Actions whose handlers fire only when the status changes between ticks.
EDGE_TRIGGERED = frozenset({
    Action.COMPLETED,
    Action.GENERIC_FAILURE,
    Action.TOKEN_EXHAUSTED,
    Action.TOOL_FAILURE,
    Action.FATAL,
    Action.UNRECOGNIZED,
})


def seconds_since_update(record: StatusRecord, now: datetime) -> Optional[float]:
    """Seconds since `last_update` (or `started_at`), None if neither is known."""
    reference = record.last_update or record.started_at
    if reference is None:
        return None
    return (now - reference).total_seconds()


def is_stalled(record: Optional[StatusRecord], stall_timeout: float, now: datetime) -> bool:
    """A running record is stalled when it has not been updated for longer than `stall_timeout` seconds."""
    if record is None or record.status != "running":
        return False
    elapsed = seconds_since_update(record, now)
    return elapsed is not None and elapsed > stall_timeout


def classify_failure(record: StatusRecord) -> Action:
    """
    Resolves the canonical failure cause. The exit code is checked before the
    status label, so a generic `failed` carrying a sentinel code is still routed
    to the specific handler.
    """
    code = record.exit_code if record.exit_code else 1
    if code == EXIT_TOKEN_EXHAUSTED or record.status == "token_exhausted":
        return Action.TOKEN_EXHAUSTED
    if code == EXIT_TOOL_FAILURE or record.status == "tool_failure":
        return Action.TOOL_FAILURE
    if code == EXIT_FATAL or record.status == "fatal":
        return Action.FATAL
    return Action.GENERIC_FAILURE


def classify(record: Optional[StatusRecord], stall_timeout: float, now: datetime) -> Action:
    """
    Maps a status snapshot onto a reconciliation action.

    :param record: The status record, or None when absent.
    :param stall_timeout: Seconds without an update before a running pipeline is stale.
    :param now: The current time (timezone-aware).
    :return: The action to take.
    """
    if record is None:
        return Action.NOOP
    if record.status == "completed":
        return Action.COMPLETED
    if record.status in FAILURE_STATUSES:
        return classify_failure(record)
    if record.status == "running":
        return Action.STALE_RUNNING if is_stalled(record, stall_timeout, now) else Action.RUNNING
    return Action.UNRECOGNIZED
