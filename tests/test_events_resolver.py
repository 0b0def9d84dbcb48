"""Tests for crossbus.events.resolver."""
import pytest

from crossbus.events.models import Event, Subscription, SubscriptionOptions
from crossbus.events.replay import ReplayBuffer
from crossbus.events.resolver import InitializationSource, SubscriptionResolver
from crossbus.events.snapshots import StateSnapshot, StateSnapshotRegistry, UnavailableReason


@pytest.fixture
def buffer(clock):
    buffer = ReplayBuffer(clock=clock)
    buffer.append(Event("grid:state", {"totalRows": 100}, clock()))
    buffer.append(Event("grid:metrics", {"fps": 60}, clock()))
    return buffer


@pytest.fixture
def registry(sink):
    return StateSnapshotRegistry(sink)


@pytest.fixture
def resolver(buffer, registry, sink):
    return SubscriptionResolver(buffer, registry, sink)


def _subscription(received, **options):
    return Subscription("grid:*", received.append, SubscriptionOptions(**options))


def test_snapshot_wins(resolver, registry):
    registry.register("grid", lambda: {"totalRows": 320})
    received = []

    result = resolver.resolve(_subscription(received, use_state_provider="grid", use_replay=True))

    assert result.source is InitializationSource.SNAPSHOT
    assert result.delivered == 1
    assert received == [{"totalRows": 320}]


def test_replay_fallback_keeps_failed_snapshot(resolver):
    received = []

    result = resolver.resolve(_subscription(received, use_state_provider="grid", use_replay=True))

    assert result.source is InitializationSource.REPLAY
    assert result.delivered == 2
    assert result.snapshot.reason is UnavailableReason.MISSING
    assert received == [{"totalRows": 100}, {"fps": 60}]


def test_nothing_requested(resolver):
    received = []
    result = resolver.resolve(_subscription(received))
    assert result.source is InitializationSource.NONE
    assert received == []


def test_prefetched_snapshot_is_used(resolver, registry):
    registry.register("grid", lambda: "should not be pulled")
    received = []
    snapshot = StateSnapshot.of("grid", {"totalRows": 1})

    resolver.resolve(_subscription(received, use_state_provider="grid"), snapshot=snapshot)

    assert received == [{"totalRows": 1}]
