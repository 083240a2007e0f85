"""Environment-specific configuration loader."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


ALLOWED_ENVS = {"dev", "test", "prod"}
RATE_LIMIT_SCOPES = {"client", "global", "path", "client_path"}


@dataclass
class Settings:
    """Runtime settings populated from the environment."""

    environment: str = "dev"
    debug: bool = False
    log_level: str = "INFO"
    request_timeout: float | None = None
    rate_limit: int | None = None
    rate_limit_window: float = 1.0
    rate_limit_scope: str = "client"


def validate_settings(settings: Settings) -> None:
    """Validate *settings* for safe operation.

    Raises
    ------
    ValueError
        If the environment is unsupported, if production settings are
        insecure, or if a numeric setting is out of range.
    """

    env = settings.environment
    if env not in ALLOWED_ENVS:
        raise ValueError(f"Unsupported environment: {env}")
    if env == "prod" and settings.debug:
        raise ValueError("Debug must be disabled in production")
    if not isinstance(logging.getLevelName(settings.log_level.upper()), int):
        raise ValueError(f"Unknown log level: {settings.log_level}")
    if settings.request_timeout is not None and settings.request_timeout <= 0:
        raise ValueError("GANTRY_REQUEST_TIMEOUT must be positive")
    if settings.rate_limit is not None and settings.rate_limit <= 0:
        raise ValueError("GANTRY_RATE_LIMIT must be a positive integer")
    if settings.rate_limit_window <= 0:
        raise ValueError("GANTRY_RATE_LIMIT_WINDOW must be positive")
    if settings.rate_limit_scope not in RATE_LIMIT_SCOPES:
        raise ValueError(
            "GANTRY_RATE_LIMIT_SCOPE must be one of: client, global, path, client_path"
        )


def _float_env(name: str) -> float | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


def _int_env(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer") from exc


def load_settings() -> Settings:
    """Return configuration derived from `GANTRY_*` variables."""

    env = os.getenv("GANTRY_ENV", "dev").lower()
    debug = os.getenv("GANTRY_DEBUG", "0").lower() in {"1", "true", "yes"}
    window = _float_env("GANTRY_RATE_LIMIT_WINDOW")
    settings = Settings(
        environment=env,
        debug=debug,
        log_level=os.getenv("GANTRY_LOG_LEVEL", "DEBUG" if debug else "INFO").upper(),
        request_timeout=_float_env("GANTRY_REQUEST_TIMEOUT"),
        rate_limit=_int_env("GANTRY_RATE_LIMIT"),
        rate_limit_window=1.0 if window is None else window,
        rate_limit_scope=os.getenv("GANTRY_RATE_LIMIT_SCOPE", "client").strip().lower(),
    )
    validate_settings(settings)
    return settings


def configure_logging(settings: Settings | None = None) -> None:
    """Install a basic handler on the ``gantry`` logger tree."""

    settings = settings or load_settings()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("gantry").setLevel(settings.log_level)


__all__ = [
    "ALLOWED_ENVS",
    "RATE_LIMIT_SCOPES",
    "Settings",
    "configure_logging",
    "load_settings",
    "validate_settings",
]
