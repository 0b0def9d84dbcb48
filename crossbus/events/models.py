"""
Data types shared by the event bus components.
"""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from crossbus.events.bus import EventBus

# Callback type: receives its own copy of the payload
EventCallback = Callable[[Any], Any]

# State provider type: zero-arg pull returning a value or an awaitable
StatePull = Callable[[], Any]

_subscription_ids = itertools.count(1)


def clone(value: Any) -> Any:
    """Structurally copy a payload so no two owners share it."""
    return copy.deepcopy(value)


@dataclass(frozen=True)
class Event:
    """
    Immutable published fact.

    Attributes:
        name: Event name (e.g., "notifications:unread")
        payload: Event payload, owned by the event
        timestamp: Monotonic instant of publication (seconds)
        seq: Sequence number assigned by the replay buffer, 0 until buffered
    """

    name: str
    payload: Any = None
    timestamp: float = 0.0
    seq: int = 0

    def with_payload(self, payload: Any) -> Event:
        """Return a copy of the event carrying ``payload``."""
        return replace(self, payload=clone(payload))

    def renamed(self, name: str) -> Event:
        """Return a copy of the event published under ``name``."""
        return replace(self, name=name)

    def copy(self) -> Event:
        """Return an event holding a deep copy of the payload."""
        return replace(self, payload=clone(self.payload))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "payload": clone(self.payload),
            "timestamp": self.timestamp,
            "seq": self.seq,
        }


@dataclass(frozen=True)
class ReplayEntry:
    """Buffered event plus its per-bus sequence number."""

    event: Event
    seq: int

    @property
    def name(self) -> str:
        return self.event.name

    @property
    def timestamp(self) -> float:
        return self.event.timestamp

    def age(self, now: float) -> float:
        return now - self.event.timestamp


@dataclass(frozen=True)
class SubscriptionOptions:
    """
    Hybrid initialization options for a subscription.

    Attributes:
        use_state_provider: Owner id whose state provider is pulled first
        use_replay: Replay buffered history when no snapshot is available
    """

    use_state_provider: str | None = None
    use_replay: bool = False


@dataclass
class Subscription:
    """Registered interest in events matching a pattern."""

    pattern: str
    callback: EventCallback
    options: SubscriptionOptions = field(default_factory=SubscriptionOptions)
    owner: str | None = None
    id: int = field(default_factory=lambda: next(_subscription_ids))
    active: bool = True

    @property
    def callback_name(self) -> str:
        return getattr(self.callback, "__qualname__", None) or repr(self.callback)


class SubscriptionHandle:
    """
    Handle returned by ``subscribe``.

    Calling the handle unsubscribes; calling it again is a no-op.
    """

    __slots__ = ("_bus", "_subscription")

    def __init__(self, bus: EventBus, subscription: Subscription):
        self._bus = bus
        self._subscription = subscription

    @property
    def id(self) -> int:
        return self._subscription.id

    @property
    def pattern(self) -> str:
        return self._subscription.pattern

    @property
    def owner(self) -> str | None:
        return self._subscription.owner

    @property
    def active(self) -> bool:
        return self._subscription.active

    @property
    def subscription(self) -> Subscription:
        return self._subscription

    def unsubscribe(self) -> None:
        self._bus.unsubscribe(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"SubscriptionHandle(id={self.id}, pattern={self.pattern!r}, {state})"
