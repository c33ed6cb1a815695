from datetime import datetime, timezone

import pytest

from nudge_engine.simulation import SimulatedClock
from nudge_engine.store import RuntimeStore


@pytest.fixture
def clock():
    return SimulatedClock(datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return RuntimeStore(clock=clock)
