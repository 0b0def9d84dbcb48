"""Tests for crossbus.events.replay."""
import pytest

from crossbus.config import ConfigurationError
from crossbus.events.models import Event
from crossbus.events.replay import ReplayBuffer


def _event(name, clock, payload=None):
    return Event(name=name, payload=payload, timestamp=clock())


class TestAppend:
    def test_assigns_increasing_seq(self, clock):
        buffer = ReplayBuffer(clock=clock)
        first = buffer.append(_event("a", clock))
        second = buffer.append(_event("a", clock))
        assert (first.seq, second.seq) == (1, 2)
        assert second.event.seq == 2

    def test_capacity_keeps_most_recent(self, clock):
        buffer = ReplayBuffer(capacity=2, clock=clock)
        for name in ("A", "B", "C"):
            buffer.append(_event(name, clock))
        assert [e.name for e in buffer.query("*")] == ["B", "C"]
        assert buffer.get_stats()["evicted"] == 1

    def test_overflow_by_k(self, clock):
        buffer = ReplayBuffer(capacity=5, clock=clock)
        for i in range(5 + 7):
            buffer.append(_event("x", clock, i))
        assert [e.event.payload for e in buffer.query("x")] == [7, 8, 9, 10, 11]


class TestTtl:
    def test_entry_expires_after_ttl(self, clock):
        buffer = ReplayBuffer(ttl=30.0, clock=clock)
        buffer.append(_event("a", clock))
        clock.advance(30.0)
        assert len(buffer.query("a")) == 1
        clock.advance(0.001)
        assert buffer.query("a") == []
        assert len(buffer) == 0

    def test_append_trims_expired_head(self, clock):
        buffer = ReplayBuffer(ttl=10.0, clock=clock)
        buffer.append(_event("old", clock))
        clock.advance(11)
        buffer.append(_event("new", clock))
        assert len(buffer) == 1
        assert buffer.get_stats()["expired"] == 1

    def test_only_expired_prefix_removed(self, clock):
        buffer = ReplayBuffer(ttl=10.0, clock=clock)
        buffer.append(_event("a", clock))
        clock.advance(6)
        buffer.append(_event("b", clock))
        clock.advance(6)
        assert [e.name for e in buffer.query("*")] == ["b"]


class TestQuery:
    def test_filters_by_pattern_oldest_first(self, clock):
        buffer = ReplayBuffer(clock=clock)
        for name in ("grid:state", "notifications:unread", "grid:metrics"):
            buffer.append(_event(name, clock))
        assert [e.name for e in buffer.query("grid:*")] == ["grid:state", "grid:metrics"]
        assert [e.name for e in buffer.query("notifications:unread")] == ["notifications:unread"]

    def test_returns_new_list(self, clock):
        buffer = ReplayBuffer(clock=clock)
        buffer.append(_event("a", clock))
        buffer.query("a").clear()
        assert len(buffer.query("a")) == 1


class TestResize:
    def test_shrinking_capacity_trims(self, clock):
        buffer = ReplayBuffer(capacity=10, clock=clock)
        for i in range(6):
            buffer.append(_event("x", clock, i))
        buffer.resize(capacity=3)
        assert [e.event.payload for e in buffer.query("x")] == [3, 4, 5]
        assert buffer.capacity == 3

    def test_shrinking_ttl_trims(self, clock):
        buffer = ReplayBuffer(ttl=30, clock=clock)
        buffer.append(_event("x", clock))
        clock.advance(5)
        buffer.resize(ttl=2)
        assert len(buffer) == 0

    def test_invalid_values_leave_limits(self, clock):
        buffer = ReplayBuffer(capacity=4, ttl=8, clock=clock)
        with pytest.raises(ConfigurationError):
            buffer.resize(capacity=10, ttl=0)
        assert (buffer.capacity, buffer.ttl) == (4, 8.0)

    def test_rejects_invalid_construction(self):
        with pytest.raises(ConfigurationError):
            ReplayBuffer(capacity=0)


def test_clear(clock):
    buffer = ReplayBuffer(clock=clock)
    buffer.append(_event("a", clock))
    assert buffer.clear() == 1
    assert list(buffer) == []
