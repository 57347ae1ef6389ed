import os
import math
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import pipewatch.settings as default_settings
from pipewatch.local.errors import ConfigError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupervisorConfig:
    """Resolved, immutable supervisor configuration."""
    poll_interval: float
    max_restarts: int
    stall_timeout: float
    backoff_schedule: Tuple[float, ...]
    project_label: str
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    display_timezone: str = default_settings.DISPLAY_TIMEZONE
    notification_timeout: float = default_settings.NOTIFICATION_TIMEOUT_SECONDS
    telegram_api_url: str = default_settings.TELEGRAM_API_URL
    project_root: Path = default_settings.PROJECT_ROOT
    state_file: Path = default_settings.STATE_FILE_PATH
    log_file: Path = default_settings.LOG_FILE_PATH
    pipeline_log_file: Path = default_settings.PIPELINE_LOG_FILE_PATH
    pipeline_command: Tuple[str, ...] = field(default_factory=lambda: tuple(default_settings.PIPELINE_COMMAND))

    @property
    def backoff_minutes(self) -> Tuple[int, ...]:
        return tuple(int(seconds // 60) for seconds in self.backoff_schedule)


def _flatten(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Flattens nested mappings so that `telegram: {bot_token: x}` and a
    top-level `bot_token: x` resolve to the same key. The first occurrence wins.
    """
    flat: Dict[str, Any] = {}
    for key, value in mapping.items():
        if isinstance(value, Mapping):
            for sub_key, sub_value in _flatten(value).items():
                flat.setdefault(sub_key, sub_value)
        else:
            flat.setdefault(str(key), value)
    return flat


def _parse_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number, got a boolean")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("expected a finite number")
    return number


def _parse_count(value: Any) -> int:
    """Whole numbers only: `2.9` and `yes` are rejected rather than truncated."""
    number = _parse_number(value)
    if not number.is_integer():
        raise ValueError("expected a whole number")
    return int(number)


def _parse_minutes_list(value: Any) -> Tuple[float, ...]:
    if isinstance(value, str):
        items: Iterable[Any] = [part for part in value.replace(" ", "").split(",") if part]
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    minutes = tuple(_parse_number(item) for item in items)
    if not minutes or any(m <= 0 for m in minutes):
        raise ValueError("backoff list must be non-empty and strictly positive")
    return minutes


# Field name -> coercion function.
_COERCERS = {
    "poll_interval_seconds": _parse_number,
    "max_restarts": _parse_count,
    "stall_timeout_minutes": _parse_number,
    "backoff_minutes": _parse_minutes_list,
    "telegram_bot_token": str,
    "telegram_chat_id": str,
    "project_label": str,
    "display_timezone": str,
}


class MergedSettings:
    """
    Merges default settings with `pipeline.yaml` and environment overrides.

    Precedence, lowest to highest:
    1. Base values from `settings.py`.
    2. Recognized keys from the `pipeline.yaml` configuration file.
    3. Environment variables listed in `settings.ENVIRONMENT_KEYS`.

    A value that cannot be coerced is logged and the lower layer is kept.
    """

    def __init__(self, config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> None:
        self.config_path = Path(config_path) if config_path else default_settings.CONFIG_FILE_PATH
        self.values: Dict[str, Any] = {}
        self._load_defaults()
        self._load_file()
        self._load_environment(environ)

    def _load_defaults(self) -> None:
        self.values = {
            "poll_interval_seconds": float(default_settings.POLL_INTERVAL_SECONDS),
            "max_restarts": default_settings.MAX_RESTARTS,
            "stall_timeout_minutes": float(default_settings.STALL_TIMEOUT_MINUTES),
            "backoff_minutes": tuple(float(m) for m in default_settings.BACKOFF_MINUTES),
            "telegram_bot_token": default_settings.TELEGRAM_BOT_TOKEN,
            "telegram_chat_id": default_settings.TELEGRAM_CHAT_ID,
            "project_label": default_settings.PROJECT_NAME,
            "display_timezone": default_settings.DISPLAY_TIMEZONE,
        }

    def _apply(self, field_name: str, raw_value: Any, source: str) -> None:
        try:
            value = _COERCERS[field_name](raw_value)
        except (TypeError, ValueError) as e:
            log.warning(f"Ignoring invalid value {raw_value!r} for '{field_name}' from {source}: {e}")
            return
        if isinstance(value, str) and not value.strip():
            return
        self.values[field_name] = value
        log.debug(f"Setting '{field_name}' taken from {source}")

    def _load_file(self) -> None:
        """Applies recognized keys from the configuration file, if present."""
        if not self.config_path.exists():
            log.warning(f"{self.config_path.name} not found, using defaults")
            return

        try:
            content = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as e:
            log.warning(f"Failed to load config file '{self.config_path}': {e}")
            return

        if content is None:
            return
        if not isinstance(content, Mapping):
            log.warning(f"Config file '{self.config_path}' is not a key/value mapping. Ignoring.")
            return

        for key, raw_value in _flatten(content).items():
            field_name = default_settings.CONFIG_FILE_KEYS.get(key)
            if field_name is None:
                log.debug(f"Ignoring unrecognized config key '{key}'")
                continue
            if raw_value is None:
                continue
            self._apply(field_name, raw_value, source=self.config_path.name)
        log.info(f"Configuration loaded from {self.config_path.name}")

    def _load_environment(self, environ: Optional[Mapping[str, str]]) -> None:
        env = os.environ if environ is None else environ
        for env_key, field_name in default_settings.ENVIRONMENT_KEYS.items():
            raw_value = env.get(env_key)
            if raw_value is None or raw_value == "":
                continue
            self._apply(field_name, raw_value, source=f"${env_key}")

    def build(self) -> SupervisorConfig:
        """
        Produces the immutable SupervisorConfig.

        :return: The resolved configuration.
        :raises ConfigError: If a resolved value is out of range.
        """
        v = self.values
        if v["poll_interval_seconds"] <= 0:
            raise ConfigError(f"poll_interval_seconds must be positive, got {v['poll_interval_seconds']}")
        if v["max_restarts"] < 0:
            raise ConfigError(f"max_restarts must be >= 0, got {v['max_restarts']}")
        if v["stall_timeout_minutes"] <= 0:
            raise ConfigError(f"stall_timeout_minutes must be positive, got {v['stall_timeout_minutes']}")

        # pipeline.yaml lives at the project root, so every project path hangs off its directory.
        project_root = self.config_path.parent.resolve()
        return SupervisorConfig(
            poll_interval=v["poll_interval_seconds"],
            max_restarts=v["max_restarts"],
            stall_timeout=v["stall_timeout_minutes"] * 60,
            backoff_schedule=tuple(m * 60 for m in v["backoff_minutes"]),
            project_label=v["project_label"],
            telegram_bot_token=v["telegram_bot_token"],
            telegram_chat_id=v["telegram_chat_id"],
            display_timezone=v["display_timezone"],
            project_root=project_root,
            state_file=project_root / default_settings.STATE_FILE_PATH.name,
            log_file=project_root / default_settings.LOGS_DIR.name / default_settings.LOG_FILE_PATH.name,
            pipeline_log_file=project_root / default_settings.LOGS_DIR.name / default_settings.PIPELINE_LOG_FILE_PATH.name,
        )


def load_config(config_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> SupervisorConfig:
    """
    Resolves the supervisor configuration once from defaults, file and environment.

    :param config_path: Path to `pipeline.yaml`. Defaults to the project root's file.
    :param environ: Environment mapping. Defaults to `os.environ`.
    :return: The resolved SupervisorConfig.
    """
    return MergedSettings(config_path, environ).build()
