import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from pipewatch.local.errors import AlreadyRunning, ProcessSpawnError
from pipewatch.local.supervisor.classifier import Action, classify

if TYPE_CHECKING:
    from .supervisor import Supervisor

log = logging.getLogger(__name__)


class FeatureQueue:
    """Ordered work items plus a cursor. Lives for a single queue run."""

    def __init__(self, items: Sequence[str]) -> None:
        self.items: List[str] = [item for item in items if item]
        self.cursor = 0

    def __len__(self) -> int:
        return len(self.items)

    @property
    def current(self) -> Optional[str]:
        return self.items[self.cursor] if self.cursor < len(self.items) else None

    def advance(self) -> None:
        self.cursor += 1

    def remaining(self) -> List[str]:
        """Items after the current one, never started."""
        return self.items[self.cursor + 1:]


@dataclass
class QueueResult:
    completed: List[str] = field(default_factory=list)
    failed_item: Optional[str] = None
    remaining: List[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.failed_item is not None


class QueueRunner:
    """
    Runs features one after another through the supervisor's process manager.
    The queue never resumes a failed item: the first item that does not end in
    `completed` aborts the queue.
    """

    def __init__(self, supervisor: "Supervisor") -> None:
        self.supervisor = supervisor

    def _run_item(self, item: str):
        """
        Launches one item and blocks until it exits.

        The record read back only counts as the item's outcome when it names the
        item and was written after the launch; otherwise the outcome is unknown.

        :return: (record, reason). `record` is None when the outcome is unknown.
        """
        sup = self.supervisor
        # Status records carry whole-second timestamps.
        launched_at = sup.clock().replace(microsecond=0)
        try:
            handle = sup.processes.start(resume=False, feature=item)
        except (ProcessSpawnError, AlreadyRunning) as e:
            log.error(f"Could not start feature {item}: {e}")
            return None, str(e)

        code = handle.wait()
        sup.processes.poll()
        log.info(f"Feature {item} exited with code {code}")
        record = sup.read_state()
        if record is None:
            return None, f"no readable status record after exit code {code}"
        if record.feature != item:
            log.warning(f"Status record belongs to '{record.feature}', not '{item}'")
            return None, f"exited with code {code} without writing its own status record"
        if record.last_update is not None and record.last_update < launched_at:
            log.warning(f"Status record for '{item}' predates its launch")
            return None, f"exited with code {code} without updating its status record"
        if record.status == "completed" and code:
            return None, f"status record says completed but the process exited with code {code}"
        return record, None

    def run(self, items: Sequence[str]) -> QueueResult:
        """
        Executes the queue in order.

        :param items: Feature names, in execution order.
        :return: Which items completed, which one failed and which were never run.
        """
        sup = self.supervisor
        queue = FeatureQueue(items)
        result = QueueResult()
        started_at = sup.clock()
        total = len(queue)

        log.info(f"Running features sequentially: {', '.join(queue.items)}")
        sup.dispatcher.notify(sup.messages.queue_started(queue.items, started_at))

        while queue.current is not None:
            item, index = queue.current, queue.cursor
            log.info("=" * 20 + f" Starting feature: {item} " + "=" * 20)
            sup.dispatcher.notify(sup.messages.queue_item_started(item, index, total))

            record, reason = self._run_item(item)
            action = classify(record, sup.config.stall_timeout, sup.clock())
            if action == Action.COMPLETED:
                sup.handle_completed(record)
                result.completed.append(item)
                queue.advance()
                continue

            status = record.status if record else "unknown"
            log.error(f"Feature {item} ended with status '{status}', stopping queue")
            result.failed_item = item
            result.remaining = queue.remaining()
            sup.dispatcher.notify(sup.messages.queue_aborted(
                item, index, total, record, result.remaining, started_at, reason))
            break

        sup.dispatcher.notify(sup.messages.queue_summary(len(result.completed), total, result.aborted, started_at))
        log.info("Feature queue finished" + (" (aborted)" if result.aborted else ""))
        sup.dispatcher.flush()
        return result
