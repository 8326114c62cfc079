"""
Logging module for childwatch.
This module provides functionality to set up console and Loki logging.
"""

from .setup import setup_logging
from .handler import LokiHandler

__all__ = ["setup_logging", "LokiHandler"]
