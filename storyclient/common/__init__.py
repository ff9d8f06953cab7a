"""Common utilities and shared components."""

from storyclient.common.config import Settings, get_settings
from storyclient.common.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
