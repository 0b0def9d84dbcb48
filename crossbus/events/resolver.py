"""
Hybrid initialization for new subscriptions.

At subscribe time a subscriber is first offered the owner's pulled state.
Only if no state is available is buffered history replayed. Snapshots are
fresher than history, and history is better than nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from crossbus.events.diagnostics import DiagnosticsSink, Fault, FaultKind, report_fault
from crossbus.events.models import Subscription, clone
from crossbus.events.replay import ReplayBuffer
from crossbus.events.snapshots import StateSnapshot, StateSnapshotRegistry
from crossbus.logging_config import get_logger

logger = get_logger(__name__)


class InitializationSource(str, Enum):
    """Where the initialization delivery came from."""

    SNAPSHOT = "snapshot"
    REPLAY = "replay"
    NONE = "none"


@dataclass(frozen=True)
class InitializationResult:
    """Outcome of hybrid initialization for one subscription."""

    source: InitializationSource
    delivered: int = 0
    snapshot: StateSnapshot | None = None


class SubscriptionResolver:
    """
    Applies the state-first, replay-fallback policy.

    Args:
        buffer: Replay buffer owned by the bus
        registry: State snapshot registry owned by the bus
        diagnostics: Sink for callback faults during initialization
    """

    def __init__(
        self,
        buffer: ReplayBuffer,
        registry: StateSnapshotRegistry,
        diagnostics: DiagnosticsSink,
    ):
        self._buffer = buffer
        self._registry = registry
        self._diagnostics = diagnostics

    def resolve(
        self,
        subscription: Subscription,
        snapshot: StateSnapshot | None = None,
    ) -> InitializationResult:
        """
        Run hybrid initialization synchronously.

        Args:
            subscription: Subscription being initialized, not yet registered
            snapshot: Snapshot already fetched by the caller (async path);
                fetched here when omitted
        """
        owner_id = subscription.options.use_state_provider
        if owner_id is not None:
            if snapshot is None:
                snapshot = self._registry.fetch(owner_id)
            if snapshot.available:
                return self._deliver_snapshot(subscription, snapshot)
        return self._replay_or_wait(subscription, snapshot)

    async def fetch_snapshot(self, subscription: Subscription) -> StateSnapshot | None:
        """Await the state provider named by the subscription, if any."""
        owner_id = subscription.options.use_state_provider
        if owner_id is None:
            return None
        return await self._registry.fetch_async(owner_id)

    def _deliver_snapshot(self, subscription: Subscription, snapshot: StateSnapshot) -> InitializationResult:
        self._invoke(subscription, clone(snapshot.value), event_name=None)
        logger.debug(
            "subscription_initialized",
            source=InitializationSource.SNAPSHOT.value,
            pattern=subscription.pattern,
            owner_id=snapshot.owner_id,
        )
        return InitializationResult(InitializationSource.SNAPSHOT, delivered=1, snapshot=snapshot)

    def _replay_or_wait(
        self,
        subscription: Subscription,
        snapshot: StateSnapshot | None,
    ) -> InitializationResult:
        if not subscription.options.use_replay:
            return InitializationResult(InitializationSource.NONE, snapshot=snapshot)

        entries = self._buffer.query(subscription.pattern)
        for entry in entries:
            self._invoke(subscription, clone(entry.event.payload), event_name=entry.name)

        logger.debug(
            "subscription_initialized",
            source=InitializationSource.REPLAY.value,
            pattern=subscription.pattern,
            replayed=len(entries),
        )
        return InitializationResult(InitializationSource.REPLAY, delivered=len(entries), snapshot=snapshot)

    def _invoke(self, subscription: Subscription, payload: Any, event_name: str | None) -> None:
        try:
            subscription.callback(payload)
        except Exception as e:
            report_fault(
                self._diagnostics,
                Fault(
                    kind=FaultKind.SUBSCRIBER,
                    error=e,
                    event_name=event_name,
                    pattern=subscription.pattern,
                    owner_id=subscription.options.use_state_provider,
                    subscription_id=subscription.id,
                    detail="initialization",
                ),
            )
