"""
Human-facing notification texts.

Every function here is pure: it takes the data to render and returns a
Telegram Markdown string. Nothing is sent from this module.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pipewatch.local.status import StatusRecord, StepProgress

log = logging.getLogger(__name__)


#* --- Formatting Helpers ---
def resolve_timezone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning(f"Unknown timezone '{name}', falling back to UTC.")
        return timezone.utc

def format_duration(start: Optional[datetime], end: Optional[datetime] = None) -> str:
    """Renders elapsed time as `Ns`, `Nm Ss` or `Nh Mm`. `N/A` without a start."""
    if start is None:
        return "N/A"
    end = end or datetime.now(timezone.utc)
    seconds = max(0, int((end - start).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m"

def format_timestamp(value: Optional[datetime], tz=timezone.utc, with_date: bool = True) -> str:
    if value is None:
        return "N/A"
    local = value.astimezone(tz)
    return local.strftime("%d/%m %H:%M:%S" if with_date else "%H:%M")

def format_steps(progress: StepProgress) -> str:
    """One line per step, checked when completed."""
    return "\n".join(
        f"✅ {step}" if progress.is_completed(step) else f"⬜ {step}"
        for step in progress.steps
    )


class MessageFormatter:
    """Builds every notification the supervisor sends, headed by the project label."""

    def __init__(self, project_label: str, timezone_name: str = "UTC") -> None:
        self.project_label = project_label
        self.tz = resolve_timezone(timezone_name)

    def header(self) -> str:
        return f"\U0001f3d7 *{self.project_label}*"

    def _join(self, lines: Sequence[Optional[str]]) -> str:
        # None marks an optional line that is left out; "" is a deliberate blank line.
        return "\n".join(line for line in lines if line is not None)

    def _error_line(self, record: StatusRecord) -> Optional[str]:
        return f"\n\U0001f4ac *Error:* {record.error}" if record.error else None

    def _step(self, record: StatusRecord) -> str:
        return record.current_step or "unknown"

    #* --- Reconciliation Messages ---
    def completed(self, record: StatusRecord) -> str:
        return self._join([
            self.header(),
            "",
            "✅ *Feature completed!*",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"⏱ *Duration:* {format_duration(record.started_at, record.last_update)}",
            f"\U0001f552 *Completed:* {format_timestamp(record.last_update, self.tz)}",
            "",
            "*Progress:*",
            format_steps(record.progress),
        ])

    def failure_restarting(self, record: StatusRecord, attempt: int, max_restarts: int) -> str:
        return self._join([
            self.header(),
            "",
            "⚠️ *Pipeline failed* - restarting automatically",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Failed step:* {self._step(record)}",
            f"\U0001f4df *Exit code:* {record.exit_code}",
            f"\U0001f504 *Attempt:* {attempt}/{max_restarts}",
            f"⏱ *Duration so far:* {format_duration(record.started_at, record.last_update)}",
            "",
            "*Progress:*",
            format_steps(record.progress),
            self._error_line(record),
            "",
            "\U0001f501 Restarting with `--resume`...",
        ])

    def failure_manual(self, record: StatusRecord, restart_count: int, max_restarts: int) -> str:
        return self._join([
            self.header(),
            "",
            "❌ *Pipeline FAILED* - manual intervention required",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Failed step:* {self._step(record)}",
            f"\U0001f4df *Exit code:* {record.exit_code}",
            f"\U0001f504 *Attempts:* {restart_count}/{max_restarts} (limit reached)",
            f"⏱ *Duration:* {format_duration(record.started_at, record.last_update)}",
            f"\U0001f552 *Time:* {format_timestamp(record.last_update, self.tz)}",
            "",
            "*Progress:*",
            format_steps(record.progress),
            self._error_line(record),
        ])

    def token_exhausted(self, record: StatusRecord, backoff_seconds: float, level: int,
                        schedule: Sequence[float], now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        retry_at = now + timedelta(seconds=backoff_seconds)
        schedule_text = ", ".join(f"{s / 60:g}" for s in schedule)
        return self._join([
            self.header(),
            "",
            "⏳ *Tokens exhausted* - automatic backoff",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Interrupted step:* {self._step(record)}",
            f"\U0001f504 *Backoff:* {backoff_seconds / 60:g} minutes (level {level}/{len(schedule)})",
            f"⏰ *Next retry:* {format_timestamp(retry_at, self.tz, with_date=False)}",
            "",
            "*Progress:*",
            format_steps(record.progress),
            "",
            f"\U0001f4a1 _Backoff grows: {schedule_text} min_",
        ])

    def tool_failure(self, record: StatusRecord, attempt: int, max_restarts: int, restarting: bool) -> str:
        return self._join([
            self.header(),
            "",
            "\U0001f527 *MCP Tool Failure*",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Failed step:* {self._step(record)}",
            f"\U0001f504 *Attempt:* {attempt}/{max_restarts}",
            "",
            "*Progress:*",
            format_steps(record.progress),
            self._error_line(record),
            "",
            "\U0001f501 Restarting with `--resume`..." if restarting
            else "❌ Restart limit reached. Manual intervention required.",
        ])

    def fatal(self, record: StatusRecord) -> str:
        return self._join([
            self.header(),
            "",
            "\U0001f6a8\U0001f6a8\U0001f6a8 *FATAL ERROR* \U0001f6a8\U0001f6a8\U0001f6a8",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Failed step:* {self._step(record)}",
            f"\U0001f4df *Exit code:* {record.exit_code if record.exit_code is not None else 99} (FATAL)",
            f"⏱ *Duration:* {format_duration(record.started_at, record.last_update)}",
            f"\U0001f552 *Time:* {format_timestamp(record.last_update, self.tz)}",
            "",
            "*Progress:*",
            format_steps(record.progress),
            self._error_line(record),
            "",
            "⛔ *Pipeline STOPPED - NO auto-restart*",
            "\U0001f4be Emergency git commit in progress...",
            "\U0001f6e0 Manual intervention required",
        ])

    def stalled(self, record: StatusRecord, stall_timeout: float, restarting: bool) -> str:
        return self._join([
            self.header(),
            "",
            "⏱ *Pipeline stalled*",
            "",
            f"\U0001f4cb *Feature:* `{record.feature}`",
            f"\U0001f6d1 *Stuck step:* {self._step(record)}",
            f"⏱ *Total duration:* {format_duration(record.started_at)}",
            f"\U0001f552 *Last update:* {format_timestamp(record.last_update, self.tz)}",
            f"\U0001f6ab *No update for:* {stall_timeout / 60:g} min",
            f"\U0001f480 *PID:* {record.pid} (killing...)" if record.pid else None,
            "",
            "*Progress:*",
            format_steps(record.progress),
            "",
            "\U0001f501 Kill + restart with `--resume`..." if restarting
            else "❌ Restart limit reached. Manual intervention required.",
        ])

    #* --- Queue Messages ---
    def queue_started(self, items: Sequence[str], started_at: datetime) -> str:
        return self._join([
            self.header(),
            "",
            "\U0001f680 *Pipeline queue started*",
            "",
            f"\U0001f4cb *Features queued:* {len(items)}",
            *[f"  {i}. `{item}`" for i, item in enumerate(items, start=1)],
            "",
            f"\U0001f552 *Start:* {format_timestamp(started_at, self.tz)}",
        ])

    def queue_item_started(self, item: str, index: int, total: int) -> str:
        return self._join([
            self.header(),
            "",
            f"\U0001f3ac *Starting feature* ({index + 1}/{total})",
            "",
            f"\U0001f4cb *Feature:* `{item}`",
            f"\U0001f4ca *Queue progress:* {index}/{total} completed",
        ])

    def queue_aborted(self, item: str, index: int, total: int, record: Optional[StatusRecord],
                      remaining: Sequence[str], started_at: datetime, reason: Optional[str] = None) -> str:
        exit_code = record.exit_code if record and record.exit_code is not None else "unknown"
        error = (record.error if record else None) or reason
        return self._join([
            self.header(),
            "",
            "❌ *Pipeline queue STOPPED*",
            "",
            f"\U0001f6d1 *Failed:* `{item}` ({index + 1}/{total})",
            f"\U0001f4df *Exit code:* {exit_code}",
            f"⏱ *Queue duration:* {format_duration(started_at)}",
            f"\U0001f4ac *Error:* {error}" if error else None,
            "",
            "*Remaining features not executed:*",
            *([f"  ⬜ `{r}`" for r in remaining] or ["  (none)"]),
        ])

    def queue_summary(self, completed: int, total: int, aborted: bool, started_at: datetime) -> str:
        title = "\U0001f3c1 *Pipeline queue aborted*" if aborted else "\U0001f3c1 *Pipeline queue completed*"
        return self._join([
            self.header(),
            "",
            title,
            "",
            f"\U0001f4cb *Features completed:* {completed}/{total}",
            f"⏱ *Total duration:* {format_duration(started_at)}",
        ])
