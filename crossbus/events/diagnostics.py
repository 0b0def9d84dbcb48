"""
Fault reporting for the event bus.

Faults raised inside dispatch and initialization never propagate to the
publisher or subscriber. They are turned into ``Fault`` records and handed
to an injected ``DiagnosticsSink``. The default sink logs them and keeps
the most recent ones in memory, similar to a dead letter list.
"""

from __future__ import annotations

import time
import traceback
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from crossbus.logging_config import get_logger

logger = get_logger(__name__)


class FaultKind(str, Enum):
    """Kinds of contained faults."""

    SUBSCRIBER = "subscriber_fault"
    PROVIDER = "provider_fault"
    MIDDLEWARE = "middleware_fault"


@dataclass(frozen=True)
class Fault:
    """
    A contained failure inside the bus.

    Attributes:
        kind: Which component failed
        error: The exception raised, if any
        event_name: Event being published or replayed
        pattern: Pattern of the affected subscription
        owner_id: State provider owner involved
        subscription_id: Affected subscription
        detail: Free-form reason (e.g. "reentrant")
        timestamp: Wall clock time of the report
    """

    kind: FaultKind
    error: BaseException | None = None
    event_name: str | None = None
    pattern: str | None = None
    owner_id: str | None = None
    subscription_id: int | None = None
    detail: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        return self.detail

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "event_name": self.event_name,
            "pattern": self.pattern,
            "owner_id": self.owner_id,
            "subscription_id": self.subscription_id,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


@runtime_checkable
class DiagnosticsSink(Protocol):
    """Receiver for contained faults."""

    def report(self, fault: Fault) -> None:
        ...


class LoggingDiagnosticsSink:
    """
    Default sink: logs every fault and remembers the latest ones.

    Args:
        max_records: Number of faults kept for ``recent()``
    """

    def __init__(self, max_records: int = 100):
        self._records: deque[Fault] = deque(maxlen=max_records)

    def report(self, fault: Fault) -> None:
        fields = {k: v for k, v in fault.to_dict().items() if v not in (None, "")}
        fields.pop("timestamp", None)
        if fault.error is not None:
            fields["traceback"] = "".join(
                traceback.format_exception(type(fault.error), fault.error, fault.error.__traceback__)
            )
            logger.error("bus_fault", **fields)
        else:
            logger.warning("bus_fault", **fields)
        self._records.append(fault)

    def recent(self, limit: int = 100, kind: FaultKind | None = None) -> list[Fault]:
        """Get the most recent faults, oldest first."""
        records = [f for f in self._records if kind is None or f.kind == kind]
        return records[-limit:] if limit > 0 else []

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        return count

    def __len__(self) -> int:
        return len(self._records)


def report_fault(sink: DiagnosticsSink, fault: Fault) -> None:
    """Hand ``fault`` to ``sink``; a failing sink is logged and ignored."""
    try:
        sink.report(fault)
    except Exception:
        logger.exception("diagnostics_sink_error", kind=fault.kind.value)
