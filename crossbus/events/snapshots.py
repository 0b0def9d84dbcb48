"""
Registry of pull-based state providers.

Each module may register one provider that returns its current state. A
late subscriber pulls that state instead of waiting for the next event.

Fetches never raise. Missing providers, faults and circular pulls all come
back as an unavailable ``StateSnapshot`` so the caller can fall back to
replay.

Example:
    registry = StateSnapshotRegistry()
    registry.register("graphicalContainer", lambda: {"totalRows": 320})

    snapshot = registry.fetch("graphicalContainer")
    if snapshot.available:
        render(snapshot.value)
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import Any

from crossbus.events.diagnostics import (
    DiagnosticsSink,
    Fault,
    FaultKind,
    LoggingDiagnosticsSink,
    report_fault,
)
from crossbus.events.models import StatePull, clone
from crossbus.logging_config import get_logger

logger = get_logger(__name__)

# (registry id, owner id) pairs being fetched on the current call stack
_in_flight: ContextVar[frozenset[tuple[int, str]]] = ContextVar(
    "crossbus_in_flight", default=frozenset()
)


class UnavailableReason(str, Enum):
    """Why a snapshot could not be produced."""

    MISSING = "missing"
    REENTRANT = "reentrant"
    FAULT = "fault"
    EMPTY = "empty"
    PENDING = "pending"


@dataclass(frozen=True)
class StateSnapshot:
    """Result of a state fetch."""

    owner_id: str
    available: bool
    value: Any = None
    reason: UnavailableReason | None = None
    error: BaseException | None = None

    @classmethod
    def of(cls, owner_id: str, value: Any) -> StateSnapshot:
        return cls(owner_id=owner_id, available=True, value=value)

    @classmethod
    def unavailable(
        cls,
        owner_id: str,
        reason: UnavailableReason,
        error: BaseException | None = None,
    ) -> StateSnapshot:
        return cls(owner_id=owner_id, available=False, reason=reason, error=error)

    def __bool__(self) -> bool:
        return self.available


class StateSnapshotRegistry:
    """
    Per-owner state providers with a reentrancy guard.

    The guard tracks owners whose fetch is on the current call stack. A
    nested fetch of the same owner, directly or through other providers,
    returns ``REENTRANT`` instead of recursing. The in-flight set lives in
    a module-level context variable keyed by registry, so separate asyncio
    tasks keep separate stacks.
    """

    def __init__(self, diagnostics: DiagnosticsSink | None = None):
        self._providers: dict[str, StatePull] = {}
        self._diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, owner_id: str, pull: StatePull) -> None:
        """
        Register the state provider for ``owner_id``.

        An existing provider for the same owner is replaced.
        """
        if not isinstance(owner_id, str) or not owner_id:
            raise ValueError("owner_id must be a non-empty string")
        if not callable(pull):
            raise TypeError("state provider must be callable")
        replaced = owner_id in self._providers
        self._providers[owner_id] = pull
        logger.debug("state_provider_registered", owner_id=owner_id, replaced=replaced)

    def unregister(self, owner_id: str) -> bool:
        """Remove the provider for ``owner_id``. Returns False if absent."""
        if self._providers.pop(owner_id, None) is None:
            return False
        logger.debug("state_provider_unregistered", owner_id=owner_id)
        return True

    def owners(self) -> list[str]:
        return list(self._providers)

    def clear(self) -> None:
        self._providers.clear()

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def is_fetching(self, owner_id: str) -> bool:
        """Check whether ``owner_id`` is being fetched on this call stack."""
        return (id(self), owner_id) in _in_flight.get()

    @contextmanager
    def _guard(self, owner_id: str) -> Iterator[bool]:
        key = (id(self), owner_id)
        in_flight = _in_flight.get()
        if key in in_flight:
            yield False
            return
        token = _in_flight.set(in_flight | {key})
        try:
            yield True
        finally:
            _in_flight.reset(token)

    def fetch(self, owner_id: str) -> StateSnapshot:
        """
        Pull the current state of ``owner_id``.

        An awaitable result is run to completion when no event loop is
        running in this thread; otherwise the snapshot is ``PENDING`` and
        ``fetch_async`` should be used.

        Returns:
            Snapshot holding a deep copy of the state, or the reason it is
            unavailable
        """
        pull = self._providers.get(owner_id)
        if pull is None:
            return self._missing(owner_id)

        with self._guard(owner_id) as acquired:
            if not acquired:
                return self._reentrant(owner_id)
            try:
                value = pull()
                if inspect.isawaitable(value):
                    value = self._complete(owner_id, value)
                    if isinstance(value, StateSnapshot):
                        return value
            except Exception as e:
                return self._faulted(owner_id, e)
            return self._snapshot(owner_id, value)

    async def fetch_async(self, owner_id: str) -> StateSnapshot:
        """Pull the current state of ``owner_id``, awaiting async providers."""
        pull = self._providers.get(owner_id)
        if pull is None:
            return self._missing(owner_id)

        with self._guard(owner_id) as acquired:
            if not acquired:
                return self._reentrant(owner_id)
            try:
                value = pull()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as e:
                return self._faulted(owner_id, e)
            return self._snapshot(owner_id, value)

    def _complete(self, owner_id: str, awaitable: Any) -> Any:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(_await(awaitable))

        if inspect.iscoroutine(awaitable):
            awaitable.close()
        logger.warning("state_provider_pending", owner_id=owner_id)
        return StateSnapshot.unavailable(owner_id, UnavailableReason.PENDING)

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _snapshot(self, owner_id: str, value: Any) -> StateSnapshot:
        if value is None:
            logger.debug("state_provider_empty", owner_id=owner_id)
            return StateSnapshot.unavailable(owner_id, UnavailableReason.EMPTY)
        try:
            copied = clone(value)
        except Exception as e:
            return self._faulted(owner_id, e)
        return StateSnapshot.of(owner_id, copied)

    def _missing(self, owner_id: str) -> StateSnapshot:
        logger.debug("state_provider_missing", owner_id=owner_id)
        return StateSnapshot.unavailable(owner_id, UnavailableReason.MISSING)

    def _reentrant(self, owner_id: str) -> StateSnapshot:
        report_fault(
            self._diagnostics,
            Fault(kind=FaultKind.PROVIDER, owner_id=owner_id, detail="reentrant fetch"),
        )
        return StateSnapshot.unavailable(owner_id, UnavailableReason.REENTRANT)

    def _faulted(self, owner_id: str, error: Exception) -> StateSnapshot:
        report_fault(
            self._diagnostics,
            Fault(kind=FaultKind.PROVIDER, error=error, owner_id=owner_id, detail="provider raised"),
        )
        return StateSnapshot.unavailable(owner_id, UnavailableReason.FAULT, error=error)


async def _await(awaitable: Any) -> Any:
    return await awaitable
