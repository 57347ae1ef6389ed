import sys
import logging
from pathlib import Path
from typing import Optional
from logging.handlers import RotatingFileHandler

import pipewatch.settings as default_settings

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """The formatter shared by the console and file handlers."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)


def setup_logging(console_level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Configures the root logger for the application.
    This sets up a console handler and a persistent rotating file handler,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_file: Path of the persistent log. Defaults to `logs/supervisor.log`.
    """
    log_file = Path(log_file) if log_file else default_settings.LOG_FILE_PATH

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to prevent re-adding them on re-runs
    if root_logger.hasHandlers():
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- File Handler (persistent, all levels from INFO) ---
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=default_settings.LOG_MAX_BYTES,
            backupCount=default_settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(min(console_level, logging.INFO))
        file_handler.setFormatter(MainFormatter())
        root_logger.addHandler(file_handler)
    except OSError as e:
        root_logger.error(f"Failed to initialize file logging handler at '{log_file}': {e}. Logging to file will be disabled.")

    # urllib3 logs every connection at DEBUG; keep it out of verbose output.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
