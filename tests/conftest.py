from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from pipewatch.local.config import SupervisorConfig
from pipewatch.local.errors import ProcessSpawnError, SignalError
from pipewatch.local.status import StatusRecord, parse_record
from pipewatch.local.supervisor.controller import RestartController, RestartScheduler
from pipewatch.local.supervisor.supervisor import Supervisor

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def make_record(status: Optional[str], **fields) -> StatusRecord:
    data = {"status": status, "current_feature": "contacts", "started_at": iso(NOW - timedelta(minutes=10)),
            "last_update": iso(NOW - timedelta(minutes=1))}
    data.update(fields)
    return parse_record(data)


class FakeReader:
    def __init__(self, record: Optional[StatusRecord] = None) -> None:
        self.record = record
        self.error: Optional[Exception] = None

    def read(self) -> Optional[StatusRecord]:
        if self.error:
            raise self.error
        return self.record


class FakeHandle:
    def __init__(self, pid: int, code: int = 0, on_wait=None) -> None:
        self.pid = pid
        self.code = code
        self.on_wait = on_wait

    def wait(self, timeout=None):
        if self.on_wait:
            self.on_wait()
        return self.code


class FakeProcesses:
    def __init__(self) -> None:
        self.starts: List[dict] = []
        self.terminated: List[int] = []
        self.settled = 0
        self.spawn_error = False
        self.signal_error = False
        self.on_wait = None
        self.exit_code = 0
        self.exit_codes: dict = {}

    def poll(self):
        return None

    def settle(self, timeout: float = 0) -> None:
        self.settled += 1

    def start(self, resume: bool = False, feature: Optional[str] = None):
        self.starts.append({"resume": resume, "feature": feature})
        if self.spawn_error:
            raise ProcessSpawnError("bash: not found")
        return FakeHandle(1000 + len(self.starts), self.exit_codes.get(feature, self.exit_code), self.on_wait)

    def terminate(self, pid: int, timeout: float = 0) -> None:
        self.terminated.append(pid)
        if self.signal_error:
            raise SignalError(f"Failed to kill PID {pid}: no such process")


class FakeDispatcher:
    def __init__(self) -> None:
        self.messages: List[str] = []
        self.flushed = 0

    def notify(self, text: str) -> None:
        self.messages.append(text)

    def flush(self, timeout: float = 0) -> bool:
        self.flushed += 1
        return True


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config(tmp_path: Path) -> SupervisorConfig:
    return SupervisorConfig(
        poll_interval=30,
        max_restarts=3,
        stall_timeout=30 * 60,
        backoff_schedule=(5 * 60, 10 * 60, 20 * 60),
        project_label="Test Project",
        display_timezone="UTC",
        project_root=tmp_path,
        state_file=tmp_path / "pipeline-state.json",
        log_file=tmp_path / "logs" / "supervisor.log",
        pipeline_log_file=tmp_path / "logs" / "pipeline.log",
    )


@pytest.fixture
def harness(config):
    """A Supervisor wired to fakes, with the fakes reachable as attributes."""
    reader = FakeReader()
    processes = FakeProcesses()
    dispatcher = FakeDispatcher()
    monotonic = FakeMonotonic()
    emergency_calls: List[Path] = []

    def emergency(root):
        emergency_calls.append(root)
        return True

    supervisor = Supervisor(
        config,
        reader=reader,
        processes=processes,
        controller=RestartController(config.max_restarts, config.backoff_schedule),
        dispatcher=dispatcher,
        scheduler=RestartScheduler(monotonic),
        clock=lambda: NOW,
        monotonic=monotonic,
        emergency=emergency,
    )
    supervisor.reader_fake = reader
    supervisor.processes_fake = processes
    supervisor.dispatcher_fake = dispatcher
    supervisor.monotonic_fake = monotonic
    supervisor.emergency_calls = emergency_calls
    return supervisor
