"""
Cross-module event synchronization.

Provides the pub/sub event bus through which independently loaded modules
exchange state, with replay history and pull-based state providers for
modules that attach late.
"""

from crossbus.events.bus import (
    EventBus,
    ModuleBus,
    get_event_bus,
    publish,
    reset_event_bus,
    subscribe,
)
from crossbus.events.diagnostics import (
    DiagnosticsSink,
    Fault,
    FaultKind,
    LoggingDiagnosticsSink,
)
from crossbus.events.middleware import Middleware, block, debounce, log_events
from crossbus.events.models import (
    Event,
    EventCallback,
    ReplayEntry,
    SubscriptionHandle,
    SubscriptionOptions,
)
from crossbus.events.replay import ReplayBuffer
from crossbus.events.resolver import InitializationSource, SubscriptionResolver
from crossbus.events.snapshots import (
    StateSnapshot,
    StateSnapshotRegistry,
    UnavailableReason,
)

__all__ = [
    "DiagnosticsSink",
    "Event",
    "EventBus",
    "EventCallback",
    "Fault",
    "FaultKind",
    "InitializationSource",
    "LoggingDiagnosticsSink",
    "Middleware",
    "ModuleBus",
    "ReplayBuffer",
    "ReplayEntry",
    "StateSnapshot",
    "StateSnapshotRegistry",
    "SubscriptionHandle",
    "SubscriptionOptions",
    "SubscriptionResolver",
    "UnavailableReason",
    "block",
    "debounce",
    "get_event_bus",
    "log_events",
    "publish",
    "reset_event_bus",
    "subscribe",
]
