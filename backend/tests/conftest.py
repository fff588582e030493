"""
Pytest configuration for verification pipeline tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tests.fakes import FakeStore, build_services

# Configure pytest-asyncio to auto mode
pytest_plugins = ('pytest_asyncio',)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def services(store):
    return build_services(store)
