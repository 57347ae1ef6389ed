"""
This module initializes the console package, exposing command execution,
status display and help output for the command line.
"""

from .process import execute_command
from .handler import display_status, print_help

__all__ = ["execute_command", "display_status", "print_help"]
