"""Core utilities for the admission service."""

from quotagate.app.core.config import Settings, settings
from quotagate.app.core.logging import get_log_context, get_logger, setup_logging
from quotagate.app.core.utils import get_utc_date_key, seconds_until_next_utc_day, utc_now

__all__ = [
    "Settings",
    "settings",
    "get_log_context",
    "get_logger",
    "setup_logging",
    "get_utc_date_key",
    "seconds_until_next_utc_day",
    "utc_now",
]
