import json
import logging
from enum import Enum
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

import pipewatch.settings as default_settings
from pipewatch.local.errors import StatusParseError

log = logging.getLogger(__name__)


class ProgressShape(str, Enum):
    """Which of the two progress representations the record used."""
    STEP_OBJECTS = "step_objects"
    COMPLETED_NAMES = "completed_names"
    NONE = "none"


@dataclass(frozen=True)
class StepProgress:
    """Canonical progress: ordered step names plus the set of completed ones."""
    shape: ProgressShape
    steps: Tuple[str, ...]
    completed: FrozenSet[str] = frozenset()

    def is_completed(self, step: str) -> bool:
        return step in self.completed


@dataclass(frozen=True)
class StatusRecord:
    """A snapshot of the supervised pipeline, as written by the pipeline itself."""
    status: Optional[str]
    exit_code: Optional[int] = None
    current_step: Optional[str] = None
    feature: str = "unknown"
    started_at: Optional[datetime] = None
    last_update: Optional[datetime] = None
    pid: Optional[int] = None
    error: Optional[str] = None
    duration: Optional[int] = None
    progress: StepProgress = field(
        default_factory=lambda: StepProgress(ProgressShape.NONE, tuple(default_settings.DEFAULT_PIPELINE_STEPS))
    )
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parses an ISO-8601 timestamp into an aware datetime.
    Naive timestamps are interpreted as local time. Returns None when unparsable.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.astimezone()
    return parsed


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


def _step_name(step: Any) -> Optional[str]:
    if isinstance(step, dict):
        name = step.get("name")
        return str(name) if name else None
    if step is None:
        return None
    return str(step)


def normalize_progress(data: Dict[str, Any]) -> StepProgress:
    """
    Normalizes the two progress shapes into a single StepProgress.

    - `steps`: an array of step objects (`{"name": ..., "status": ...}`) or names.
    - `steps_completed`: a list of names, or a space-separated string.

    `steps_completed` takes priority for the completed set; `steps` supplies the
    ordered step list whenever present.
    """
    raw_steps = data.get("steps")
    raw_completed = data.get("steps_completed")

    steps: Tuple[str, ...] = tuple(default_settings.DEFAULT_PIPELINE_STEPS)
    if isinstance(raw_steps, list):
        steps = tuple(name for name in (_step_name(s) for s in raw_steps) if name)

    if raw_completed:
        if isinstance(raw_completed, list):
            completed = frozenset(str(s) for s in raw_completed if s)
        else:
            completed = frozenset(str(raw_completed).split())
        return StepProgress(ProgressShape.COMPLETED_NAMES, steps, completed)

    if isinstance(raw_steps, list):
        completed = frozenset(
            name for s in raw_steps
            if isinstance(s, dict) and s.get("status") == "completed"
            for name in [_step_name(s)] if name
        )
        return StepProgress(ProgressShape.STEP_OBJECTS, steps, completed)

    return StepProgress(ProgressShape.NONE, steps)


def parse_record(data: Any) -> StatusRecord:
    """
    Builds a StatusRecord from decoded JSON.

    :param data: The decoded JSON document.
    :return: The parsed record.
    :raises StatusParseError: If the document is not a JSON object.
    """
    if not isinstance(data, dict):
        raise StatusParseError(f"Status record must be a JSON object, got {type(data).__name__}")

    status = data.get("status")
    return StatusRecord(
        status=str(status) if status is not None else None,
        exit_code=_optional_int(data.get("exit_code")),
        current_step=_optional_str(data.get("current_step")),
        feature=_optional_str(data.get("current_feature")) or _optional_str(data.get("feature")) or "unknown",
        started_at=parse_timestamp(data.get("started_at")),
        last_update=parse_timestamp(data.get("last_update")),
        pid=_optional_int(data.get("pid")),
        error=_optional_str(data.get("error")),
        duration=_optional_int(data.get("duration")),
        progress=normalize_progress(data),
        raw=data,
    )


class StatusReader:
    """Reads the status record the pipeline writes. Never writes it."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> Optional[StatusRecord]:
        """
        Loads and parses the status record.

        :return: The record, or None if the file does not exist yet.
        :raises StatusParseError: If the file exists but is not well-formed.
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StatusParseError(f"Could not read '{self.path}': {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StatusParseError(f"Malformed status record '{self.path}': {e}") from e
        return parse_record(data)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
