"""
Pytest configuration and shared fixtures for the Gantry test suite.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from gantry import GantryApp  # noqa: E402
from infrastructure.configuration import Settings  # noqa: E402
from infrastructure.monitoring import clear_traces, reset_metrics  # noqa: E402

_GANTRY_ENV_VARS = (
    "GANTRY_ENV",
    "GANTRY_DEBUG",
    "GANTRY_LOG_LEVEL",
    "GANTRY_REQUEST_TIMEOUT",
    "GANTRY_RATE_LIMIT",
    "GANTRY_RATE_LIMIT_WINDOW",
    "GANTRY_RATE_LIMIT_SCOPE",
    "GANTRY_APP",
)


@pytest.fixture(autouse=True)
def clean_observability(monkeypatch: pytest.MonkeyPatch):
    """Start every test with empty metrics, no spans and no GANTRY_* env."""
    for name in _GANTRY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_metrics()
    clear_traces()
    yield
    reset_metrics()
    clear_traces()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test")


@pytest.fixture
def app(settings: Settings) -> GantryApp:
    """Fresh application with test settings."""
    return GantryApp(settings=settings)
