import sys
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pipewatch.settings as default_settings
from pipewatch.local.errors import AlreadyRunning, ProcessSpawnError, SignalError

log = logging.getLogger(__name__)

ExitCallback = Callable[[int], None]


#* --- Process Status ---
def get_process_from_pid(pid: int) -> psutil.Process:
    """A wrapper for psutil.Process for easy testing/mocking if needed."""
    return psutil.Process(pid)


#* --- Child Output ---
def _open_output(path: Path):
    """Opens the file the child writes its stdout/stderr to, in append mode."""
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "ab")


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific flags so the child gets its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class ProcessHandle:
    """
    Wraps a launched pipeline child. Exit callbacks fire at most once, on the
    thread that first observes the exit through `poll()` or `wait()`.
    """

    def __init__(self, popen: subprocess.Popen, args: Sequence[str]) -> None:
        self._popen = popen
        self.args = list(args)
        self._callbacks: List[ExitCallback] = []
        self._notified = False
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.returncode

    def add_exit_callback(self, callback: ExitCallback) -> None:
        self._callbacks.append(callback)

    def _notify_exit(self, code: int) -> None:
        with self._lock:
            if self._notified:
                return
            self._notified = True
        for callback in self._callbacks:
            try:
                callback(code)
            except Exception as e:
                log.error(f"Exit callback for PID {self.pid} failed: {e}", exc_info=True)

    def poll(self) -> Optional[int]:
        code = self._popen.poll()
        if code is not None:
            self._notify_exit(code)
        return code

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Blocks until the child exits.

        :param timeout: Seconds to wait, or None to wait forever.
        :return: The exit code, or None if the timeout elapsed first.
        """
        try:
            code = self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        if code is not None:
            self._notify_exit(code)
        return code

    def is_running(self) -> bool:
        return self.poll() is None


class ProcessManager:
    """Starts, tracks and terminates the single supervised pipeline child."""

    def __init__(
        self,
        project_root: Path,
        command: Sequence[str] = tuple(default_settings.PIPELINE_COMMAND),
        output_path: Optional[Path] = None,
        name: str = "pipeline",
    ) -> None:
        self.project_root = Path(project_root)
        self.command = list(command)
        # None: the child inherits our stdout/stderr.
        self.output_path = Path(output_path) if output_path is not None else None
        self.name = name
        self.active: Optional[ProcessHandle] = None

    def build_args(self, resume: bool = False, feature: Optional[str] = None) -> List[str]:
        """Returns the command line for one pipeline invocation."""
        args = list(self.command)
        if resume:
            args.append(default_settings.RESUME_FLAG)
        if feature:
            args.extend([default_settings.FEATURE_FLAG, feature])
        return args

    @property
    def is_running(self) -> bool:
        return self.active is not None and self.active.is_running()

    def _on_exit(self, code: int) -> None:
        log.info(f"Pipeline exited with code {code}")

    def start(self, resume: bool = False, feature: Optional[str] = None) -> ProcessHandle:
        """
        Launches the pipeline executable.

        :param resume: Pass the resume flag so the pipeline continues from its checkpoint.
        :param feature: Run a single named feature.
        :return: The handle of the new child.
        :raises AlreadyRunning: If a tracked child is still alive.
        :raises ProcessSpawnError: If the executable could not be launched.
        """
        self.poll()
        if self.active is not None:
            raise AlreadyRunning(f"Pipeline already running with PID {self.active.pid}")

        args = self.build_args(resume, feature)
        log.info(f"Starting {self.name}: {' '.join(args)}")
        output = None
        if self.output_path is not None:
            try:
                output = _open_output(self.output_path)
            except OSError as e:
                raise ProcessSpawnError(f"Cannot open {self.name} output file {self.output_path}: {e}") from e
        try:
            popen = subprocess.Popen(
                args,
                cwd=str(self.project_root),
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT if output is not None else None,
                **_get_popen_creation_flags(),
            )
        except (OSError, ValueError) as e:
            raise ProcessSpawnError(f"Failed to start {self.name} ({' '.join(args)}): {e}") from e
        finally:
            # The child has its own descriptor and keeps writing after we exit.
            if output is not None:
                output.close()

        handle = ProcessHandle(popen, args)
        handle.add_exit_callback(self._on_exit)
        self.active = handle
        log.info(f"{self.name.capitalize()} started with PID: {popen.pid}")
        if self.output_path is not None:
            log.info(f"{self.name.capitalize()} output is written to {self.output_path}")
        return handle

    def poll(self) -> Optional[int]:
        """Reaps the tracked child if it has exited. Returns its exit code, if any."""
        if self.active is None:
            return None
        code = self.active.poll()
        if code is not None:
            self.active = None
        return code

    def settle(self, timeout: float = default_settings.SETTLE_TIMEOUT_SECONDS) -> None:
        """
        Makes sure no tracked child is left before a restart. A child that already
        reported a terminal status gets `timeout` seconds to exit, then is terminated.
        """
        if self.active is None:
            return
        handle = self.active
        if handle.wait(timeout) is None:
            log.warning(f"{self.name.capitalize()} (PID {handle.pid}) still alive {timeout}s after reporting a terminal status.")
            try:
                self.terminate(handle.pid)
            except SignalError as e:
                log.warning(str(e))
            handle.wait(default_settings.TERMINATE_TIMEOUT_SECONDS)
        self.active = None

    def terminate(self, pid: int, timeout: float = default_settings.TERMINATE_TIMEOUT_SECONDS) -> None:
        """
        Sends a termination signal to any process id, tracked or not, and kills it
        if it is still alive after `timeout` seconds.

        :raises SignalError: If the process does not exist or cannot be signalled.
        """
        try:
            proc = get_process_from_pid(pid)
            proc.terminate()
            log.info(f"Sent SIGTERM to pipeline process (PID: {pid})")
            try:
                proc.wait(timeout=timeout)
            except psutil.TimeoutExpired:
                log.warning(f"Process {pid} did not terminate within {timeout}s. Killing it.")
                proc.kill()
        except psutil.NoSuchProcess as e:
            raise SignalError(f"Failed to kill PID {pid}: no such process") from e
        except psutil.AccessDenied as e:
            raise SignalError(f"Failed to kill PID {pid}: access denied") from e
        except psutil.Error as e:
            raise SignalError(f"Failed to kill PID {pid}: {e}") from e
