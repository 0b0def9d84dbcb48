"""
Publish-path middleware.

A middleware is called as ``middleware(event, proceed)``. It may inspect
the event, pass it on with ``proceed(event)``, pass on a transformed copy
(``proceed(event.with_payload(...))``), or veto it by not calling
``proceed`` at all. Middleware runs in registration order.

Example:
    bus.register_middleware(block("debug:*"))
    bus.register_middleware(debounce(0.25, pattern="graphicalContainer:resize"))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from typing import Callable

from crossbus.events.diagnostics import (
    DiagnosticsSink,
    Fault,
    FaultKind,
    LoggingDiagnosticsSink,
    report_fault,
)
from crossbus.events.models import Event
from crossbus.events.patterns import compile_pattern, validate_pattern
from crossbus.logging_config import get_logger

logger = get_logger(__name__)

Proceed = Callable[[Event], None]
Middleware = Callable[[Event, Proceed], None]


class MiddlewareChain:
    """
    Ordered middleware runner.

    A raising middleware is reported to the diagnostics sink. By default
    the chain then continues with the event the failing middleware was
    given; with ``strict=True`` the publish is vetoed instead.
    """

    def __init__(self, diagnostics: DiagnosticsSink | None = None, strict: bool = False):
        self._middleware: list[Middleware] = []
        self._diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()
        self.strict = strict

    def append(self, middleware: Middleware) -> None:
        if not callable(middleware):
            raise TypeError("middleware must be callable")
        self._middleware.append(middleware)

    def reset(self) -> None:
        self._middleware.clear()

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(list(self._middleware))

    def run(self, event: Event) -> Event | None:
        """
        Pass ``event`` through the chain.

        Returns:
            The event that reached the end of the chain, or None if vetoed
        """
        chain = list(self._middleware)
        result: list[Event] = []

        def step(index: int, current: Event) -> None:
            if index == len(chain):
                result.append(current)
                return

            middleware = chain[index]
            called = False

            def proceed(next_event: Event) -> None:
                nonlocal called
                if called:
                    logger.warning(
                        "middleware_proceed_repeated",
                        middleware=_name(middleware),
                        name=current.name,
                    )
                    return
                if not isinstance(next_event, Event):
                    raise TypeError("proceed() expects an Event")
                called = True
                step(index + 1, next_event)

            try:
                middleware(current, proceed)
            except Exception as e:
                report_fault(
                    self._diagnostics,
                    Fault(
                        kind=FaultKind.MIDDLEWARE,
                        error=e,
                        event_name=current.name,
                        detail=_name(middleware),
                    ),
                )
                if not called and not self.strict:
                    called = True
                    step(index + 1, current)

        step(0, event)
        return result[0] if result else None


def _name(fn: Callable) -> str:
    return getattr(fn, "__qualname__", None) or type(fn).__name__


# =============================================================================
# Stock middleware
# =============================================================================


def block(*patterns: str) -> Middleware:
    """Veto every event whose name matches one of ``patterns``."""
    matchers = [compile_pattern(validate_pattern(p)) for p in patterns]

    def block_middleware(event: Event, proceed: Proceed) -> None:
        if any(m(event.name) for m in matchers):
            logger.debug("event_blocked", name=event.name)
            return
        proceed(event)

    return block_middleware


def debounce(
    window: float,
    pattern: str = "*",
    clock: Callable[[], float] = time.monotonic,
) -> Middleware:
    """
    Leading-edge debounce per event name.

    An event matching ``pattern`` is dropped if an event with the same name
    passed less than ``window`` seconds ago. Names whose window has closed
    are forgotten the next time an event passes.
    """
    if window <= 0:
        raise ValueError("window must be > 0")
    matcher = compile_pattern(validate_pattern(pattern))
    last_passed: dict[str, float] = {}

    def debounce_middleware(event: Event, proceed: Proceed) -> None:
        if not matcher(event.name):
            proceed(event)
            return
        now = clock()
        last = last_passed.get(event.name)
        if last is not None and now - last < window:
            logger.debug("event_debounced", name=event.name)
            return
        for name in [n for n, t in last_passed.items() if now - t >= window]:
            del last_passed[name]
        last_passed[event.name] = now
        proceed(event)

    # names still inside their window, for inspection
    debounce_middleware.last_passed = last_passed  # type: ignore[attr-defined]
    return debounce_middleware


def log_events(level: str = "debug") -> Middleware:
    """Log every event passing through this point of the chain."""
    level_no = getattr(logging, level.upper())

    def log_middleware(event: Event, proceed: Proceed) -> None:
        logger.log(level_no, "event_passing", name=event.name, published_at=event.timestamp)
        proceed(event)

    return log_middleware
