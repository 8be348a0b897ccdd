"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.monitoring.broadcaster import BroadcastSink, InProcessPublisher  # noqa: E402
from src.monitoring.resources import ProcessResources  # noqa: E402
from src.signal_pipeline.models import Signal  # noqa: E402
from src.store.memory import InMemoryStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def publisher():
    return InProcessPublisher()


@pytest.fixture
def sink(publisher):
    return BroadcastSink(publisher)


@pytest.fixture
def resources():
    """Fixed process readings: 40% memory, 20% CPU."""
    fake = MagicMock(spec=ProcessResources)
    fake.memory_percent.return_value = 40.0
    fake.cpu_percent = AsyncMock(return_value=20.0)
    return fake


@pytest.fixture
def make_signal():
    def _make(**overrides) -> Signal:
        data = {
            "ticker": "SPY",
            "action": "LONG_ENTRY",
            "entry_price": 450.0,
            "quality": 5,
            "stop_loss": 445.0,
            "target1": 460.0,
            "atr": 2.5,
        }
        data.update(overrides)
        return Signal(**data)
    return _make
