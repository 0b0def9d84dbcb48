"""Pytest configuration and shared fixtures."""
import pytest

from crossbus.config import BusConfig
from crossbus.events import EventBus, reset_event_bus


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    """Diagnostics sink that keeps every fault."""

    def __init__(self):
        self.faults = []

    def report(self, fault):
        self.faults.append(fault)

    def kinds(self):
        return [f.kind for f in self.faults]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def bus(clock, sink):
    """Bus with a controllable clock and a recording diagnostics sink."""
    return EventBus(BusConfig(replay_capacity=50, replay_ttl=30.0), diagnostics=sink, clock=clock)


@pytest.fixture(autouse=True)
def _fresh_global_bus(monkeypatch):
    for key in (
        "CROSSBUS_REPLAY_CAPACITY",
        "CROSSBUS_REPLAY_TTL",
        "CROSSBUS_STRICT_MIDDLEWARE",
        "CROSSBUS_MAX_FAULT_RECORDS",
        "CROSSBUS_LOG_LEVEL",
        "CROSSBUS_JSON_LOGS",
    ):
        monkeypatch.delenv(key, raising=False)
    reset_event_bus()
    yield
    reset_event_bus()
