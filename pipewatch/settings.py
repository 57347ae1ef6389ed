"""
This module contains the default configuration settings for pipewatch.
It defines paths, supervisor tuning values, notification settings and the
contract of the supervised pipeline executable.

Values here are the lowest-precedence layer: `pipewatch.local.config` merges
the `pipeline.yaml` file and environment variables on top of them.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from a .env file without clobbering the real environment
load_dotenv(override=False)

#* --- Core Paths ---
PROJECT_ROOT = pathlib.Path(os.getenv("PIPEWATCH_PROJECT_ROOT", os.getcwd())).resolve()
STATE_FILE_PATH = PROJECT_ROOT / "pipeline-state.json"
CONFIG_FILE_PATH = PROJECT_ROOT / "pipeline.yaml"
LOGS_DIR = PROJECT_ROOT / "logs"
LOG_FILE_PATH = LOGS_DIR / "supervisor.log"
PIPELINE_LOG_FILE_PATH = LOGS_DIR / "pipeline.log"

#* --- Pipeline Executable Contract ---
PIPELINE_COMMAND = ["bash", "./pipeline.sh"]
RESUME_FLAG = "--resume"
FEATURE_FLAG = "--feature"
DEFAULT_PIPELINE_STEPS = ["PM", "DR-SPEC", "DEV", "SEED", "DR-IMPL", "QA"]

#* --- Supervisor Settings ---
POLL_INTERVAL_SECONDS = 30
MAX_RESTARTS = 3
STALL_TIMEOUT_MINUTES = 30
BACKOFF_MINUTES = [5, 10, 20, 40, 60]
SETTLE_TIMEOUT_SECONDS = 10     # grace for a child that already reported a terminal status
TERMINATE_TIMEOUT_SECONDS = 5   # seconds before a SIGTERM'd process is force-killed
PROCESS_TITLE = "pipewatch - Supervisor"

#* --- Emergency Persistence ---
EMERGENCY_COMMIT_MESSAGE = "[EMERGENCY] Fatal pipeline error - auto-commit"
GIT_STEP_TIMEOUT_SECONDS = 120

#* --- Notifications ---
PROJECT_NAME = "Pipeline"
TELEGRAM_API_URL = "https://api.telegram.org"
TELEGRAM_BOT_TOKEN = ""
TELEGRAM_CHAT_ID = ""
NOTIFICATION_TIMEOUT_SECONDS = 10
DISPLAY_TIMEZONE = "Europe/Rome"

#* --- Logging ---
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

#* --- Configuration Sources ---
# Keys honored in pipeline.yaml, mapped to SupervisorConfig fields.
CONFIG_FILE_KEYS = {
    "poll_interval_seconds": "poll_interval_seconds",
    "max_restarts": "max_restarts",
    "stall_timeout_minutes": "stall_timeout_minutes",
    "backoff_minutes": "backoff_minutes",
    "bot_token": "telegram_bot_token",
    "chat_id": "telegram_chat_id",
    "project_name": "project_label",
    "display_timezone": "display_timezone",
}

# Environment variables, mapped to the same field names.
ENVIRONMENT_KEYS = {
    "PIPEWATCH_POLL_INTERVAL": "poll_interval_seconds",
    "PIPEWATCH_MAX_RESTARTS": "max_restarts",
    "PIPEWATCH_STALL_TIMEOUT_MINUTES": "stall_timeout_minutes",
    "PIPEWATCH_BACKOFF_MINUTES": "backoff_minutes",
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_CHAT_ID": "telegram_chat_id",
    "PIPELINE_PROJECT_NAME": "project_label",
    "PIPEWATCH_TIMEZONE": "display_timezone",
}
