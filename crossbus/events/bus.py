"""
Event bus for cross-module state synchronization.

Provides:
- Publish/subscribe with exact and prefix-wildcard patterns
- Middleware chain able to transform or veto events
- Bounded, TTL-limited replay history for late subscribers
- Pull-based state providers, tried before replay
- Per-subscriber fault isolation with an injected diagnostics sink
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Callable

from crossbus.config import BusConfig
from crossbus.events.diagnostics import (
    DiagnosticsSink,
    Fault,
    FaultKind,
    LoggingDiagnosticsSink,
    report_fault,
)
from crossbus.events.middleware import Middleware, MiddlewareChain
from crossbus.events.models import (
    Event,
    EventCallback,
    StatePull,
    Subscription,
    SubscriptionHandle,
    SubscriptionOptions,
    clone,
)
from crossbus.events.patterns import compile_pattern, validate_pattern
from crossbus.events.replay import ReplayBuffer
from crossbus.events.resolver import InitializationResult, SubscriptionResolver
from crossbus.events.snapshots import StateSnapshotRegistry
from crossbus.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Event Bus
# =============================================================================


class EventBus:
    """
    Central event bus shared by independently loaded modules.

    Dispatch is synchronous. Subscribers registered when a publish starts
    receive the event in registration order, each with its own copy of the
    payload. All public entry points run under one reentrant lock, so
    callbacks may publish or subscribe. An event published from inside a
    callback is buffered at once but delivered after the current round,
    so every subscriber sees events of one name in publish order.
    """

    def __init__(
        self,
        config: BusConfig | None = None,
        diagnostics: DiagnosticsSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize event bus.

        Args:
            config: Replay limits and fault policy
            diagnostics: Sink receiving contained faults
            clock: Monotonic time source for event timestamps
        """
        self._config = config or BusConfig()
        if diagnostics is None:
            diagnostics = LoggingDiagnosticsSink(self._config.max_fault_records)
        self._diagnostics = diagnostics
        self._lock = threading.RLock()
        self._subscriptions: list[Subscription] = []
        self._buffer = ReplayBuffer(
            capacity=self._config.replay_capacity,
            ttl=self._config.replay_ttl,
            clock=clock,
        )
        self._registry = StateSnapshotRegistry(self._diagnostics)
        self._middleware = MiddlewareChain(self._diagnostics, strict=self._config.strict_middleware)
        self._resolver = SubscriptionResolver(self._buffer, self._registry, self._diagnostics)
        self._published = 0
        self._vetoed = 0
        self._delivered = 0
        self._subscriber_faults = 0
        self._dispatching = False
        self._pending: deque[tuple[Event, list[Subscription]]] = deque()

    @property
    def config(self) -> BusConfig:
        return self._config

    @property
    def diagnostics(self) -> DiagnosticsSink:
        return self._diagnostics

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish(self, name: str, payload: Any = None) -> Event | None:
        """
        Publish an event.

        Args:
            name: Event name (e.g., "notifications:unread")
            payload: Structurally copyable payload

        Returns:
            A copy of the published event, or None if a middleware vetoed it
        """
        if not isinstance(name, str) or not name:
            raise ValueError("event name must be a non-empty string")

        with self._lock:
            event = Event(name=name, payload=clone(payload), timestamp=self._buffer.clock())

            passed = self._middleware.run(event)
            if passed is None:
                self._vetoed += 1
                logger.debug("event_vetoed", name=name)
                return None

            entry = self._buffer.append(passed.copy())
            self._published += 1
            subscriptions = self._matching(entry.name)

            if self._dispatching:
                self._pending.append((entry.event, subscriptions))
                logger.debug("event_queued", name=entry.name, seq=entry.seq)
                return entry.event.copy()

            self._dispatching = True
            try:
                delivered = self._deliver(entry.event, subscriptions)
                while self._pending:
                    self._deliver(*self._pending.popleft())
            finally:
                self._dispatching = False
                self._pending.clear()

            logger.debug(
                "event_published",
                name=entry.name,
                seq=entry.seq,
                subscribers=delivered,
            )
            return entry.event.copy()

    def _matching(self, name: str) -> list[Subscription]:
        """Snapshot the subscriptions registered right now for ``name``."""
        return [sub for sub in self._subscriptions if compile_pattern(sub.pattern)(name)]

    def _deliver(self, event: Event, subscriptions: list[Subscription]) -> int:
        """Deliver ``event`` to ``subscriptions`` in order, containing faults."""
        delivered = 0

        for sub in subscriptions:
            try:
                sub.callback(clone(event.payload))
                delivered += 1
            except Exception as e:
                self._subscriber_faults += 1
                report_fault(
                    self._diagnostics,
                    Fault(
                        kind=FaultKind.SUBSCRIBER,
                        error=e,
                        event_name=event.name,
                        pattern=sub.pattern,
                        subscription_id=sub.id,
                        detail=sub.callback_name,
                    ),
                )

        self._delivered += delivered
        return delivered

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        pattern: str,
        callback: EventCallback,
        *,
        use_state_provider: str | None = None,
        use_replay: bool = False,
        owner: str | None = None,
    ) -> SubscriptionHandle:
        """
        Subscribe to events matching a pattern.

        Hybrid initialization runs before this returns: the state provider
        of ``use_state_provider`` is pulled first; if it yields nothing and
        ``use_replay`` is set, buffered matching events are replayed oldest
        first. The subscription then receives all future matching events.

        Args:
            pattern: Event name, or prefix ending in "*"
            callback: Called with a copy of each payload
            use_state_provider: Owner id whose state initializes the subscriber
            use_replay: Replay buffered history when no state is available
            owner: Module owning the subscription, used by ``teardown``

        Returns:
            Handle for unsubscribing

        Examples:
            bus.subscribe("notifications:unread", on_unread, use_replay=True)
            bus.subscribe("graphicalContainer:*", on_grid,
                          use_state_provider="graphicalContainer")
        """
        subscription = self._prepare(pattern, callback, use_state_provider, use_replay, owner)
        with self._lock:
            result = self._resolver.resolve(subscription)
            return self._register(subscription, result)

    async def subscribe_async(
        self,
        pattern: str,
        callback: EventCallback,
        *,
        use_state_provider: str | None = None,
        use_replay: bool = False,
        owner: str | None = None,
    ) -> SubscriptionHandle:
        """
        Subscribe from a running event loop.

        Same as ``subscribe`` except that an async state provider is awaited.
        """
        subscription = self._prepare(pattern, callback, use_state_provider, use_replay, owner)
        snapshot = await self._resolver.fetch_snapshot(subscription)
        with self._lock:
            result = self._resolver.resolve(subscription, snapshot=snapshot)
            return self._register(subscription, result)

    def _prepare(
        self,
        pattern: str,
        callback: EventCallback,
        use_state_provider: str | None,
        use_replay: bool,
        owner: str | None,
    ) -> Subscription:
        validate_pattern(pattern)
        if not callable(callback):
            raise TypeError("callback must be callable")
        return Subscription(
            pattern=pattern,
            callback=callback,
            options=SubscriptionOptions(
                use_state_provider=use_state_provider,
                use_replay=bool(use_replay),
            ),
            owner=owner,
        )

    def _register(self, subscription: Subscription, result: InitializationResult) -> SubscriptionHandle:
        self._subscriptions.append(subscription)
        logger.debug(
            "event_subscribed",
            pattern=subscription.pattern,
            subscription_id=subscription.id,
            owner=subscription.owner,
            initialized_from=result.source.value,
            initial_deliveries=result.delivered,
        )
        return SubscriptionHandle(self, subscription)

    def unsubscribe(self, handle: SubscriptionHandle | Subscription) -> None:
        """
        Remove a subscription from future dispatch.

        Idempotent. A dispatch round already in progress still completes.
        """
        subscription = handle.subscription if isinstance(handle, SubscriptionHandle) else handle
        with self._lock:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions = [s for s in self._subscriptions if s is not subscription]
            logger.debug("event_unsubscribed", pattern=subscription.pattern, subscription_id=subscription.id)

    def teardown(self, owner_id: str) -> int:
        """
        Remove everything a module registered.

        Drops the subscriptions tagged with ``owner_id`` and its state
        provider.

        Returns:
            Number of subscriptions removed
        """
        with self._lock:
            owned = [s for s in self._subscriptions if s.owner == owner_id]
            for sub in owned:
                sub.active = False
            self._subscriptions = [s for s in self._subscriptions if s.owner != owner_id]
            self._registry.unregister(owner_id)
        logger.info("module_teardown", owner_id=owner_id, subscriptions=len(owned))
        return len(owned)

    # -------------------------------------------------------------------------
    # Middleware
    # -------------------------------------------------------------------------

    def register_middleware(self, middleware: Middleware) -> None:
        """
        Append middleware to the publish path.

        Middleware is called as ``middleware(event, proceed)`` and vetoes the
        event by not calling ``proceed``.
        """
        with self._lock:
            self._middleware.append(middleware)
        logger.debug("middleware_registered", count=len(self._middleware))

    def reset_middleware(self) -> None:
        """Remove every middleware."""
        with self._lock:
            self._middleware.reset()

    # -------------------------------------------------------------------------
    # State providers
    # -------------------------------------------------------------------------

    def register_state_provider(self, owner_id: str, pull: StatePull) -> None:
        """Register (or replace) the state provider for ``owner_id``."""
        with self._lock:
            self._registry.register(owner_id, pull)

    def unregister_state_provider(self, owner_id: str) -> None:
        """Remove the state provider for ``owner_id``; no-op if absent."""
        with self._lock:
            self._registry.unregister(owner_id)

    def has_state_provider(self, owner_id: str) -> bool:
        return owner_id in self._registry

    # -------------------------------------------------------------------------
    # Configuration & history
    # -------------------------------------------------------------------------

    def configure(self, capacity: int | None = None, ttl: float | None = None) -> None:
        """
        Change the replay limits.

        Invalid values raise ConfigurationError and leave the current
        configuration untouched. Live entries are trimmed to the new limits.

        Args:
            capacity: Maximum number of buffered events
            ttl: Seconds a buffered event stays replayable
        """
        with self._lock:
            config = self._config.with_replay(capacity=capacity, ttl=ttl)
            self._buffer.resize(capacity=config.replay_capacity, ttl=config.replay_ttl)
            self._config = config
        logger.info("bus_configured", capacity=config.replay_capacity, ttl=config.replay_ttl)

    def history(self, pattern: str = "*") -> list[Event]:
        """Get copies of the live buffered events matching ``pattern``, oldest first."""
        validate_pattern(pattern)
        with self._lock:
            return [entry.event.copy() for entry in self._buffer.query(pattern)]

    def module(self, owner_id: str) -> ModuleBus:
        """Get the facade handed to module ``owner_id`` at initialization."""
        return ModuleBus(self, owner_id)

    def clear(self) -> None:
        """Drop subscriptions, middleware, state providers and history."""
        with self._lock:
            for sub in self._subscriptions:
                sub.active = False
            self._subscriptions = []
            self._middleware.reset()
            self._registry.clear()
            self._buffer.clear()

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics."""
        with self._lock:
            buffer_stats = self._buffer.get_stats()
            return {
                "subscriptions": len(self._subscriptions),
                "state_providers": len(self._registry),
                "middleware_count": len(self._middleware),
                "published": self._published,
                "vetoed": self._vetoed,
                "delivered": self._delivered,
                "subscriber_faults": self._subscriber_faults,
                "history_size": buffer_stats["size"],
                "replay_capacity": buffer_stats["capacity"],
                "replay_ttl": buffer_stats["ttl"],
                "replay_evicted": buffer_stats["evicted"],
                "replay_expired": buffer_stats["expired"],
            }


# =============================================================================
# Module facade
# =============================================================================


class ModuleBus:
    """
    Bus view handed to one module.

    Subscriptions made through it are tagged with the module's owner id, so
    ``teardown`` removes them together with the module's state provider.
    """

    def __init__(self, bus: EventBus, owner_id: str):
        if not isinstance(owner_id, str) or not owner_id:
            raise ValueError("owner_id must be a non-empty string")
        self._bus = bus
        self._owner_id = owner_id

    @property
    def owner_id(self) -> str:
        return self._owner_id

    def event_name(self, *parts: str) -> str:
        """Build an ``<owner>:<category>:<action>`` style name."""
        return ":".join((self._owner_id, *parts))

    def publish(self, name: str, payload: Any = None) -> Event | None:
        return self._bus.publish(name, payload)

    def subscribe(
        self,
        pattern: str,
        callback: EventCallback,
        *,
        use_state_provider: str | None = None,
        use_replay: bool = False,
    ) -> SubscriptionHandle:
        return self._bus.subscribe(
            pattern,
            callback,
            use_state_provider=use_state_provider,
            use_replay=use_replay,
            owner=self._owner_id,
        )

    async def subscribe_async(
        self,
        pattern: str,
        callback: EventCallback,
        *,
        use_state_provider: str | None = None,
        use_replay: bool = False,
    ) -> SubscriptionHandle:
        return await self._bus.subscribe_async(
            pattern,
            callback,
            use_state_provider=use_state_provider,
            use_replay=use_replay,
            owner=self._owner_id,
        )

    def provide_state(self, pull: StatePull) -> None:
        """Expose this module's current state to late subscribers."""
        self._bus.register_state_provider(self._owner_id, pull)

    def withdraw_state(self) -> None:
        self._bus.unregister_state_provider(self._owner_id)

    def teardown(self) -> int:
        return self._bus.teardown(self._owner_id)

    def __repr__(self) -> str:
        return f"ModuleBus(owner_id={self._owner_id!r})"


# =============================================================================
# Global Instance
# =============================================================================

_event_bus: EventBus | None = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the process-wide event bus, configured from the environment."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = EventBus(BusConfig.from_env())
        return _event_bus


def reset_event_bus() -> None:
    """Discard the process-wide event bus."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is not None:
            _event_bus.clear()
        _event_bus = None


# =============================================================================
# Convenience Functions
# =============================================================================


def subscribe(
    pattern: str,
    callback: EventCallback | None = None,
    *,
    use_state_provider: str | None = None,
    use_replay: bool = False,
    owner: str | None = None,
):
    """
    Subscribe on the process-wide bus (can be used as decorator).

    Usage:
        @subscribe("notifications:unread", use_replay=True)
        def on_unread(payload):
            ...

        # Or:
        handle = subscribe("graphicalContainer:*", handler)
    """
    bus = get_event_bus()
    options = {
        "use_state_provider": use_state_provider,
        "use_replay": use_replay,
        "owner": owner,
    }

    if callback is not None:
        return bus.subscribe(pattern, callback, **options)

    def decorator(fn: EventCallback):
        bus.subscribe(pattern, fn, **options)
        return fn

    return decorator


def publish(name: str, payload: Any = None) -> Event | None:
    """Publish an event on the process-wide bus."""
    return get_event_bus().publish(name, payload)
