import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)


@dataclass
class RestartContext:
    """Restart bookkeeping that lives as long as the supervisor does."""
    restart_count: int = 0
    backoff_index: int = 0


class RestartController:
    """
    Owns the restart and backoff counters and answers restart-policy questions.

    The two counters are independent: ordinary failures restart immediately and
    consume `restart_count`, while token exhaustion always waits and escalates
    `backoff_index` each time a deferred restart actually fires.
    """

    def __init__(self, max_restarts: int, backoff_schedule: Sequence[float]) -> None:
        if not backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")
        self.max_restarts = max_restarts
        self.backoff_schedule: Tuple[float, ...] = tuple(backoff_schedule)
        self.context = RestartContext()

    @property
    def restart_count(self) -> int:
        return self.context.restart_count

    @property
    def backoff_index(self) -> int:
        return self.context.backoff_index

    @property
    def backoff_level(self) -> int:
        """1-based backoff level used in notifications."""
        return self._clamped_index() + 1

    def _clamped_index(self) -> int:
        return min(self.context.backoff_index, len(self.backoff_schedule) - 1)

    def on_completed(self) -> None:
        """Resets both counters after a successful run."""
        if self.context.restart_count or self.context.backoff_index:
            log.info("Pipeline completed, resetting restart and backoff counters.")
        self.context.restart_count = 0
        self.context.backoff_index = 0

    def can_restart(self) -> bool:
        return self.context.restart_count < self.max_restarts

    def record_restart_attempt(self) -> int:
        """Counts one issued restart. Returns the new attempt number."""
        self.context.restart_count += 1
        return self.context.restart_count

    def next_backoff(self) -> float:
        """The current backoff wait in seconds. Does not advance the level."""
        return self.backoff_schedule[self._clamped_index()]

    def advance_backoff(self) -> None:
        """Escalates the backoff level, clamped to the last schedule entry."""
        self.context.backoff_index = min(self.context.backoff_index + 1, len(self.backoff_schedule) - 1)


class DeferredRestart:
    """A one-shot restart scheduled to fire at `due_at` (monotonic seconds)."""

    def __init__(self, due_at: float, reason: str, delay: float) -> None:
        self.due_at = due_at
        self.reason = reason
        self.delay = delay
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __repr__(self) -> str:
        return f"DeferredRestart(reason={self.reason!r}, delay={self.delay}, cancelled={self.cancelled})"


class RestartScheduler:
    """
    Holds pending deferred restarts; the reconciliation loop fires them on its
    own thread. A newly observed terminal status does not cancel a pending
    restart; `DeferredRestart.cancel()` is available but nothing calls it yet.
    """

    def __init__(self, monotonic: Callable[[], float]) -> None:
        self._monotonic = monotonic
        self._pending: List[DeferredRestart] = []

    @property
    def pending(self) -> int:
        return sum(1 for r in self._pending if not r.cancelled)

    def schedule(self, delay: float, reason: str) -> DeferredRestart:
        restart = DeferredRestart(self._monotonic() + delay, reason, delay)
        self._pending.append(restart)
        self._pending.sort(key=lambda r: r.due_at)
        log.info(f"Deferred restart scheduled in {delay:.0f}s ({reason}).")
        return restart

    def pop_due(self) -> List[DeferredRestart]:
        """Removes and returns every pending restart whose time has come, oldest first."""
        now = self._monotonic()
        due = [r for r in self._pending if r.due_at <= now]
        self._pending = [r for r in self._pending if r.due_at > now and not r.cancelled]
        return [r for r in due if not r.cancelled]

    def seconds_until_next(self) -> Optional[float]:
        live = [r.due_at for r in self._pending if not r.cancelled]
        if not live:
            return None
        return max(0.0, min(live) - self._monotonic())
