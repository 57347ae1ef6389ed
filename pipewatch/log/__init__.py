"""
Logging module for the application.
This module provides the console and persistent file logging setup.
"""

from .setup import setup_logging

__all__ = ["setup_logging"]
