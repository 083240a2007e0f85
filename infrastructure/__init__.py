"""Environment-specific configuration."""

from __future__ import annotations

# Re-export from the configuration module to maintain backward compatibility
from .configuration import (
    ALLOWED_ENVS,
    Settings,
    configure_logging,
    load_settings,
    validate_settings,
)

__all__ = [
    "ALLOWED_ENVS",
    "Settings",
    "configure_logging",
    "load_settings",
    "validate_settings",
]
