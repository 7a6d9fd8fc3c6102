"""certflow core module.

Shared components used across all services:
- Configuration management
- Error taxonomy
- Injectable clock
"""

from certflow.core.clock import Clock, fixed_clock, utc_now
from certflow.core.config import (
    CertificateSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    Settings,
    ShareTokenSettings,
    WorkflowSettings,
)
from certflow.core.settings import clear_settings_cache, get_settings, get_settings_safe

__all__ = [
    "CertificateSettings",
    "Clock",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "Settings",
    "ShareTokenSettings",
    "WorkflowSettings",
    "clear_settings_cache",
    "fixed_clock",
    "get_settings",
    "get_settings_safe",
    "utc_now",
]
