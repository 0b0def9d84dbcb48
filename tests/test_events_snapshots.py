"""Tests for crossbus.events.snapshots."""
import asyncio

import pytest

from crossbus.events.diagnostics import FaultKind, LoggingDiagnosticsSink
from crossbus.events.snapshots import StateSnapshotRegistry, UnavailableReason


@pytest.fixture
def registry(sink):
    return StateSnapshotRegistry(diagnostics=sink)


class TestRegistration:
    def test_register_and_fetch(self, registry):
        registry.register("graphicalContainer", lambda: {"totalRows": 320})
        snapshot = registry.fetch("graphicalContainer")
        assert snapshot.available
        assert snapshot.value == {"totalRows": 320}
        assert "graphicalContainer" in registry

    def test_reregistration_replaces(self, registry):
        registry.register("grid", lambda: 1)
        registry.register("grid", lambda: 2)
        assert registry.fetch("grid").value == 2
        assert registry.owners() == ["grid"]

    def test_unregister_absent_is_noop(self, registry):
        assert registry.unregister("nobody") is False
        registry.register("grid", lambda: 1)
        assert registry.unregister("grid") is True
        assert len(registry) == 0

    def test_rejects_invalid_arguments(self, registry):
        with pytest.raises(ValueError):
            registry.register("", lambda: 1)
        with pytest.raises(TypeError):
            registry.register("grid", {"not": "callable"})


class TestFetch:
    def test_missing_provider(self, registry, sink):
        snapshot = registry.fetch("grid")
        assert not snapshot
        assert snapshot.reason is UnavailableReason.MISSING
        assert sink.faults == []

    def test_value_is_deep_copied(self, registry):
        state = {"rows": [1, 2]}
        registry.register("grid", lambda: state)
        snapshot = registry.fetch("grid")
        snapshot.value["rows"].append(3)
        assert state == {"rows": [1, 2]}

    def test_none_means_no_state_yet(self, registry):
        registry.register("grid", lambda: None)
        assert registry.fetch("grid").reason is UnavailableReason.EMPTY

    def test_falsy_values_are_usable(self, registry):
        registry.register("counter", lambda: 0)
        snapshot = registry.fetch("counter")
        assert snapshot.available
        assert snapshot.value == 0

    def test_provider_fault_is_contained(self, registry, sink):
        def broken():
            raise RuntimeError("boom")

        registry.register("grid", broken)
        snapshot = registry.fetch("grid")
        assert snapshot.reason is UnavailableReason.FAULT
        assert isinstance(snapshot.error, RuntimeError)
        assert sink.kinds() == [FaultKind.PROVIDER]
        assert sink.faults[0].owner_id == "grid"

    def test_guard_released_after_fault(self, registry):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")
            return "ok"

        registry.register("grid", flaky)
        assert registry.fetch("grid").reason is UnavailableReason.FAULT
        assert not registry.is_fetching("grid")
        assert registry.fetch("grid").value == "ok"


class TestReentrancy:
    def test_direct_self_fetch(self, registry, sink):
        nested = []

        def provider():
            nested.append(registry.fetch("A"))
            return {"ok": True}

        registry.register("A", provider)
        snapshot = registry.fetch("A")

        assert snapshot.value == {"ok": True}
        assert len(nested) == 1
        assert nested[0].reason is UnavailableReason.REENTRANT
        assert sink.faults[0].detail == "reentrant fetch"

    def test_cycle_through_other_provider(self, registry):
        seen = {}

        def provider_a():
            seen["b"] = registry.fetch("B")
            return "a"

        def provider_b():
            seen["a"] = registry.fetch("A")
            return "b"

        registry.register("A", provider_a)
        registry.register("B", provider_b)

        assert registry.fetch("A").value == "a"
        assert seen["a"].reason is UnavailableReason.REENTRANT
        assert seen["b"].value == "b"
        assert not registry.is_fetching("A")
        assert not registry.is_fetching("B")

    def test_sequential_fetches_are_not_reentrant(self, registry):
        registry.register("A", lambda: 1)
        assert registry.fetch("A").value == 1
        assert registry.fetch("A").value == 1

    def test_registries_guard_independently(self, registry):
        other = StateSnapshotRegistry()
        seen = {}

        def provider():
            seen["other"] = other.fetch("A")
            seen["is_fetching"] = (registry.is_fetching("A"), other.is_fetching("A"))
            return "outer"

        registry.register("A", provider)
        other.register("A", lambda: "inner")

        assert registry.fetch("A").value == "outer"
        assert seen["other"].value == "inner"
        assert seen["is_fetching"] == (True, False)


class TestAsyncProviders:
    def test_sync_fetch_runs_coroutine_without_loop(self, registry):
        async def provider():
            await asyncio.sleep(0)
            return {"count": 5}

        registry.register("notifications", provider)
        assert registry.fetch("notifications").value == {"count": 5}

    def test_fetch_async_awaits_provider(self, registry):
        async def provider():
            return {"count": 5}

        registry.register("notifications", provider)
        snapshot = asyncio.run(registry.fetch_async("notifications"))
        assert snapshot.value == {"count": 5}

    def test_sync_fetch_inside_running_loop_is_pending(self, registry):
        async def provider():
            return 1

        registry.register("notifications", provider)

        async def main():
            return registry.fetch("notifications")

        snapshot = asyncio.run(main())
        assert snapshot.reason is UnavailableReason.PENDING

    def test_async_provider_fault(self, registry, sink):
        async def provider():
            raise ValueError("nope")

        registry.register("notifications", provider)
        snapshot = asyncio.run(registry.fetch_async("notifications"))
        assert snapshot.reason is UnavailableReason.FAULT
        assert sink.kinds() == [FaultKind.PROVIDER]


def test_supplied_empty_sink_receives_faults():
    sink = LoggingDiagnosticsSink()
    registry = StateSnapshotRegistry(sink)
    registry.register("A", lambda: 1 / 0)

    registry.fetch("A")

    assert [f.kind for f in sink.recent()] == [FaultKind.PROVIDER]
