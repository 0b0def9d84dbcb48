"""
Bounded, time-decaying history of published events.

Lets a module that attaches late catch up on what was published before it
loaded. Entries are kept in publication order, so both capacity and TTL
eviction trim from the head.

Example:
    buffer = ReplayBuffer(capacity=50, ttl=30.0)
    buffer.append(Event("notifications:unread", {"count": 5}, time.monotonic()))
    entries = buffer.query("notifications:*")
"""

from __future__ import annotations

import itertools
import time
from collections import deque
from collections.abc import Iterator
from dataclasses import replace
from typing import Callable

from crossbus.config import (
    DEFAULT_REPLAY_CAPACITY,
    DEFAULT_REPLAY_TTL,
    validate_capacity,
    validate_ttl,
)
from crossbus.events.models import Event, ReplayEntry
from crossbus.events.patterns import compile_pattern
from crossbus.logging_config import get_logger

logger = get_logger(__name__)


class ReplayBuffer:
    """
    Ordered replay history with a size cap and a TTL.

    Features:
    - Capacity eviction (oldest first)
    - TTL eviction on every append and query
    - Pattern queries returning live entries, oldest first
    """

    def __init__(
        self,
        capacity: int = DEFAULT_REPLAY_CAPACITY,
        ttl: float = DEFAULT_REPLAY_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize replay buffer.

        Args:
            capacity: Maximum number of entries
            ttl: Seconds an entry stays replayable
            clock: Monotonic time source
        """
        self._capacity = validate_capacity(capacity)
        self._ttl = validate_ttl(ttl)
        self._clock = clock
        self._entries: deque[ReplayEntry] = deque()
        self._seq = itertools.count(1)
        self._evicted = 0
        self._expired = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    def append(self, event: Event) -> ReplayEntry:
        """
        Append an event at the tail.

        Expired entries are trimmed first, then the oldest entries are
        dropped until the buffer fits its capacity.

        Returns:
            The stored entry with its sequence number
        """
        self.evict_expired()
        seq = next(self._seq)
        entry = ReplayEntry(event=replace(event, seq=seq), seq=seq)
        self._entries.append(entry)
        self._evict_overflow()
        return entry

    def query(self, pattern: str = "*") -> list[ReplayEntry]:
        """
        Get live entries whose name matches ``pattern``.

        Returns:
            Entries, oldest first
        """
        self.evict_expired()
        matcher = compile_pattern(pattern)
        return [entry for entry in self._entries if matcher(entry.name)]

    def evict_expired(self) -> int:
        """Drop entries older than the TTL. Returns the number dropped."""
        now = self._clock()
        count = 0
        while self._entries and self._entries[0].age(now) > self._ttl:
            self._entries.popleft()
            count += 1
        if count:
            self._expired += count
            logger.debug("replay_entries_expired", count=count, remaining=len(self._entries))
        return count

    def _evict_overflow(self) -> int:
        count = 0
        while len(self._entries) > self._capacity:
            self._entries.popleft()
            count += 1
        if count:
            self._evicted += count
            logger.debug("replay_entries_evicted", count=count, capacity=self._capacity)
        return count

    def resize(self, capacity: int | None = None, ttl: float | None = None) -> None:
        """
        Apply new limits and trim the live entries to them.

        Both values are validated before either is applied.
        """
        new_capacity = self._capacity if capacity is None else validate_capacity(capacity)
        new_ttl = self._ttl if ttl is None else validate_ttl(ttl)
        self._capacity = new_capacity
        self._ttl = new_ttl
        self.evict_expired()
        self._evict_overflow()

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def get_stats(self) -> dict[str, float | int]:
        """Get buffer statistics."""
        return {
            "size": len(self._entries),
            "capacity": self._capacity,
            "ttl": self._ttl,
            "evicted": self._evicted,
            "expired": self._expired,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ReplayEntry]:
        return iter(list(self._entries))
