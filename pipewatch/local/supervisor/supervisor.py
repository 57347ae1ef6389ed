import time
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import pipewatch.settings as default_settings
from pipewatch.local.config import SupervisorConfig
from pipewatch.local.errors import AlreadyRunning, ProcessSpawnError, SignalError, StatusParseError
from pipewatch.local.status import StatusReader, StatusRecord, now_utc
from pipewatch.local.supervisor.classifier import Action, EDGE_TRIGGERED, classify
from pipewatch.local.supervisor.controller import DeferredRestart, RestartController, RestartScheduler
from pipewatch.local.supervisor.emergency import emergency_commit, emergency_commit_steps
from pipewatch.local.supervisor.messages import MessageFormatter
from pipewatch.local.supervisor.notifier import NotificationDispatcher, build_notifier
from pipewatch.local.supervisor.process_utils import ProcessManager

log = logging.getLogger(__name__)

_NOT_SEEN = object()


class Supervisor:
    """
    Reconciliation loop for the pipeline.

    Each tick reads the status record, classifies it and dispatches a handler.
    Terminal statuses are edge-triggered: their handler fires only on the tick
    where the status differs from the previous tick. `running` is
    level-triggered so a stall is caught mid-run. All state mutation happens on
    the thread that calls `check_state()` / `supervision_loop()`.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        reader: Optional[StatusReader] = None,
        processes: Optional[ProcessManager] = None,
        controller: Optional[RestartController] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        scheduler: Optional[RestartScheduler] = None,
        clock: Callable[[], datetime] = now_utc,
        monotonic: Callable[[], float] = time.monotonic,
        emergency: Callable = emergency_commit,
    ) -> None:
        self.config = config
        self.reader = reader or StatusReader(config.state_file)
        self.processes = processes or ProcessManager(
            config.project_root, config.pipeline_command, output_path=config.pipeline_log_file)
        self.controller = controller or RestartController(config.max_restarts, config.backoff_schedule)
        self.dispatcher = dispatcher or NotificationDispatcher(
            build_notifier(config.telegram_bot_token, config.telegram_chat_id,
                           config.notification_timeout, config.telegram_api_url)
        )
        self.scheduler = scheduler or RestartScheduler(monotonic)
        self.messages = MessageFormatter(config.project_label, config.display_timezone)
        self.clock = clock
        self.emergency = emergency
        self.last_seen_status = _NOT_SEEN
        self.shutdown_signal_received = threading.Event()
        self.emergency_thread: Optional[threading.Thread] = None

        self._handlers = {
            Action.COMPLETED: self.handle_completed,
            Action.GENERIC_FAILURE: self.handle_failed,
            Action.TOKEN_EXHAUSTED: self.handle_token_exhausted,
            Action.TOOL_FAILURE: self.handle_tool_failure,
            Action.FATAL: self.handle_fatal,
            Action.STALE_RUNNING: self.handle_stalled,
            Action.RUNNING: self.handle_running,
            Action.UNRECOGNIZED: self.handle_unrecognized,
        }

    #* --- Reading ---
    def read_state(self) -> Optional[StatusRecord]:
        """Reads the status record. A malformed record is logged and treated as absent."""
        try:
            return self.reader.read()
        except StatusParseError as e:
            log.error(f"Failed to read state: {e}")
            return None

    #* --- Reconciliation ---
    def check_state(self) -> Action:
        """
        Runs a single reconciliation tick.

        :return: The action that was dispatched, or NOOP if nothing fired.
        """
        self.processes.poll()

        record = self.read_state()
        if record is None:
            log.debug("No pipeline state found")
            return Action.NOOP

        status_changed = self.last_seen_status is _NOT_SEEN or self.last_seen_status != record.status
        self.last_seen_status = record.status

        action = classify(record, self.config.stall_timeout, self.clock())
        if action in EDGE_TRIGGERED and not status_changed:
            return Action.NOOP

        try:
            self._handlers[action](record)
        except Exception as e:
            log.error(f"Handler for {action.value} failed: {e}", exc_info=True)
        return action

    #* --- Restarts ---
    def _restart(self, resume: bool = True) -> bool:
        """
        Issues one restart. The attempt is counted before the launch so a spawn
        failure still consumes restart budget.
        """
        self.processes.settle()
        attempt = self.controller.record_restart_attempt()
        log.info(
            f"Restarting pipeline (attempt {attempt}/{self.config.max_restarts})"
            f"{' with --resume' if resume else ''}"
        )
        try:
            self.processes.start(resume=resume)
            return True
        except (ProcessSpawnError, AlreadyRunning) as e:
            log.error(f"Restart attempt {attempt} failed: {e}")
            return False

    def run_due_restarts(self) -> int:
        """Fires every deferred restart whose wait has elapsed. Returns how many fired."""
        fired = 0
        for restart in self.scheduler.pop_due():
            log.info(f"Backoff elapsed ({restart.delay / 60:g} min), restarting pipeline.")
            self.controller.advance_backoff()
            self._restart(resume=True)
            fired += 1
        return fired

    #* --- Handlers ---
    def handle_completed(self, record: StatusRecord) -> None:
        log.info(f"SUCCESS: Feature {record.feature} completed")
        self.dispatcher.notify(self.messages.completed(record))
        self.controller.on_completed()

    def handle_failed(self, record: StatusRecord) -> None:
        log.error(f"Feature {record.feature} failed (exit code: {record.exit_code})")
        if not self.controller.can_restart():
            self.dispatcher.notify(self.messages.failure_manual(
                record, self.controller.restart_count, self.config.max_restarts))
            log.warning("Max restarts reached, manual intervention required.")
            return

        self.dispatcher.notify(self.messages.failure_restarting(
            record, self.controller.restart_count + 1, self.config.max_restarts))
        self._restart(resume=True)

    def handle_token_exhausted(self, record: StatusRecord) -> DeferredRestart:
        backoff = self.controller.next_backoff()
        log.warning(f"Token exhausted, applying backoff of {backoff / 60:g} minutes")
        self.dispatcher.notify(self.messages.token_exhausted(
            record, backoff, self.controller.backoff_level, self.controller.backoff_schedule, self.clock()))
        return self.scheduler.schedule(backoff, reason=f"token exhausted on {record.feature}")

    def handle_tool_failure(self, record: StatusRecord) -> None:
        log.error(f"Tool failure detected (exit code: {record.exit_code})")
        can_restart = self.controller.can_restart()
        self.dispatcher.notify(self.messages.tool_failure(
            record, self.controller.restart_count + 1, self.config.max_restarts, restarting=can_restart))
        if can_restart:
            self._restart(resume=True)
        else:
            log.warning("Max restarts reached after tool failure.")

    def _run_emergency(self) -> None:
        try:
            self.emergency(self.config.project_root)
        except Exception as e:
            log.error(f"Emergency commit failed: {e}", exc_info=True)

    def handle_fatal(self, record: StatusRecord) -> None:
        log.critical(f"Fatal error on feature {record.feature} (exit code: {record.exit_code}). Not restarting.")
        self.dispatcher.notify(self.messages.fatal(record))
        if self.emergency_thread is not None and self.emergency_thread.is_alive():
            log.warning("Emergency commit already in progress, not starting another.")
            return
        # The git chain can take minutes; polling continues meanwhile.
        self.emergency_thread = threading.Thread(target=self._run_emergency, daemon=True, name="EmergencyCommitThread")
        self.emergency_thread.start()

    def wait_for_emergency(self, timeout: Optional[float] = None) -> bool:
        """Waits for a running emergency commit. Returns True if none is left running."""
        if self.emergency_thread is None:
            return True
        self.emergency_thread.join(timeout)
        return not self.emergency_thread.is_alive()

    def handle_stalled(self, record: StatusRecord) -> None:
        log.warning(f"Pipeline stalled (no updates for {self.config.stall_timeout / 60:g} min)")
        can_restart = self.controller.can_restart()
        self.dispatcher.notify(self.messages.stalled(record, self.config.stall_timeout, restarting=can_restart))

        if record.pid:
            try:
                self.processes.terminate(record.pid)
            except SignalError as e:
                log.warning(str(e))

        if can_restart:
            self._restart(resume=True)

    def handle_running(self, record: StatusRecord) -> None:
        log.debug(f"Pipeline running: feature={record.feature} step={record.current_step}")

    def handle_unrecognized(self, record: StatusRecord) -> None:
        log.warning(f"Unknown status: {record.status}")

    #* --- Loop ---
    def _next_wait(self) -> float:
        wait = self.config.poll_interval
        until_restart = self.scheduler.seconds_until_next()
        if until_restart is not None:
            wait = min(wait, until_restart)
        return max(0.0, wait)

    def supervision_loop(self) -> None:
        """Polls the status record until `stop()` is called or the user interrupts."""
        log.info("Supervisor started")
        log.info(f"Poll interval: {self.config.poll_interval:g}s")
        log.info(f"Max restarts: {self.config.max_restarts}")
        log.info(f"Stall timeout: {self.config.stall_timeout / 60:g}min")
        log.info(f"Backoff schedule: {', '.join(f'{s / 60:g}' for s in self.config.backoff_schedule)} min")
        self.shutdown_signal_received.clear()

        while not self.shutdown_signal_received.is_set():
            try:
                self.run_due_restarts()
                self.check_state()
                self.shutdown_signal_received.wait(self._next_wait())
            except KeyboardInterrupt:
                log.info("Supervisor loop interrupted by user.")
                break
            except Exception as e:
                log.critical(f"Unexpected error in supervisor loop: {e}", exc_info=True)
                self.shutdown_signal_received.wait(self.config.poll_interval)

        log.info("Supervisor stopped.")

    def run_once(self) -> Action:
        """Runs one tick, then waits for an emergency commit and notifications to finish."""
        action = self.check_state()
        if not self.wait_for_emergency(default_settings.GIT_STEP_TIMEOUT_SECONDS * len(emergency_commit_steps())):
            log.error("Emergency commit still running, single-check mode exits anyway.")
        if self.scheduler.pending:
            log.warning(f"{self.scheduler.pending} deferred restart(s) dropped: single-check mode exits now.")
        self.dispatcher.flush()
        return action

    def stop(self) -> None:
        self.shutdown_signal_received.set()
