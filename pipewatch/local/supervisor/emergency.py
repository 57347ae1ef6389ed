import logging
import subprocess
from pathlib import Path
from typing import List

import pipewatch.settings as default_settings

log = logging.getLogger(__name__)


def emergency_commit_steps(message: str = default_settings.EMERGENCY_COMMIT_MESSAGE) -> List[List[str]]:
    """The git invocations that persist the working tree after a fatal error, in order."""
    return [
        ["git", "add", "-A"],
        ["git", "commit", "-m", message],
        ["git", "push"],
    ]


def emergency_commit(project_root: Path, timeout: float = default_settings.GIT_STEP_TIMEOUT_SECONDS) -> bool:
    """
    Stages, commits and pushes the current working state. Each step runs only
    after the previous one succeeded; the first failure is logged and the rest
    of the chain is abandoned.

    :param project_root: Repository working directory.
    :param timeout: Seconds allowed per git step.
    :return: True if every step succeeded.
    """
    log.info("Attempting emergency git commit...")
    for cmd in emergency_commit_steps():
        try:
            result = subprocess.run(cmd, cwd=str(project_root), timeout=timeout, check=False, capture_output=True, text=True)
        except subprocess.TimeoutExpired:
            log.error(f"Emergency commit abandoned: '{' '.join(cmd)}' timed out after {timeout}s")
            return False
        except OSError as e:
            log.error(f"Emergency commit abandoned: could not run '{' '.join(cmd)}': {e}")
            return False

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            log.error(f"Emergency commit abandoned: '{' '.join(cmd)}' exited with {result.returncode}: {output}")
            return False
        log.debug(f"Emergency step '{' '.join(cmd)}' succeeded")

    log.info("Emergency commit completed")
    return True
