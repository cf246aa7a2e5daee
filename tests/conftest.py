import os
import sys
from pathlib import Path
from typing import List

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fetchkit.utils.http import HttpxTransport  # noqa: E402


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    # Add custom markers for test organization
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


@pytest.fixture(autouse=True)
def clean_env_vars(monkeypatch):
    """Keep FETCHKIT_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("FETCHKIT_"):
            monkeypatch.delenv(key, raising=False)
    yield


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_transport():
    """Return a factory wrapping an ``httpx.MockTransport`` handler."""

    def factory(handler) -> HttpxTransport:
        return HttpxTransport(transport=httpx.MockTransport(handler))

    return factory


# Rely on pytest-asyncio for async test handling; no custom hook needed.
