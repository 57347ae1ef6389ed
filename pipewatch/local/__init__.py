"""
Local package for pipewatch.

Configuration resolution, the status record reader and the supervisor itself.
"""

from .config import SupervisorConfig, load_config
from .status import StatusReader, StatusRecord

__all__ = ["SupervisorConfig", "load_config", "StatusReader", "StatusRecord"]
