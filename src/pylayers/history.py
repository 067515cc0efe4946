"""Bounded cycle history for replay and debugging.

Only cycles that changed state are recorded. The buffer has a fixed capacity
and evicts the oldest entry first, so statistics describe the retained window
only.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pylayers.delta import thaw
from pylayers.exceptions import SetupError
from pylayers.state.events import SourcedDelta

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HistoryEntry(BaseModel):
    """One recorded cycle: the per-source deltas and the state they produced."""

    model_config = ConfigDict(frozen=True)

    cycle: int
    timestamp: datetime = Field(default_factory=_utcnow)
    deltas: tuple[SourcedDelta, ...] = ()
    snapshot_after: dict[str, Any] = Field(default_factory=dict)


class HistoryStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_count: int = 0
    first_cycle: int | None = None
    last_cycle: int | None = None
    total_delta_count: int = 0
    duration_ms: float = 0.0


class HistoryRecorder:
    """Fixed-capacity FIFO ring buffer of :class:`HistoryEntry`.

    Entries are copied on the way in and on the way out, so neither the
    caller of :meth:`record` nor a reader can change what is retained.
    """

    def __init__(self, capacity: int = 600, *, enabled: bool = True) -> None:
        if capacity <= 0:
            raise SetupError(f"history capacity must be positive, got {capacity}")
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)
        self.enabled = enabled

    @property
    def capacity(self) -> int:
        # maxlen is always set by __init__.
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        cycle: int,
        deltas: Iterable[SourcedDelta],
        snapshot_after: dict[str, Any],
        *,
        timestamp: datetime | None = None,
    ) -> HistoryEntry | None:
        """Append an entry, unless disabled or *deltas* is empty."""
        if not self.enabled:
            return None
        recorded = tuple(delta.model_copy(deep=True) for delta in deltas)
        if not recorded:
            return None
        entry = HistoryEntry(
            cycle=cycle,
            timestamp=timestamp or _utcnow(),
            deltas=recorded,
            snapshot_after=thaw(snapshot_after),
        )
        if len(self._entries) == self.capacity:
            _logger.debug("History full, evicting cycle %s", self._entries[0].cycle)
        self._entries.append(entry)
        return entry.model_copy(deep=True)

    def get_history(self) -> list[HistoryEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries]

    def get_entry(self, cycle: int) -> HistoryEntry | None:
        for entry in self._entries:
            if entry.cycle == cycle:
                return entry.model_copy(deep=True)
        return None

    def get_recent(self, count: int = 50) -> list[HistoryEntry]:
        if count <= 0:
            return []
        return [entry.model_copy(deep=True) for entry in list(self._entries)[-count:]]

    def get_stats(self) -> HistoryStats:
        if not self._entries:
            return HistoryStats()
        first = self._entries[0]
        last = self._entries[-1]
        return HistoryStats(
            entry_count=len(self._entries),
            first_cycle=first.cycle,
            last_cycle=last.cycle,
            total_delta_count=sum(len(entry.deltas) for entry in self._entries),
            duration_ms=(last.timestamp - first.timestamp) / timedelta(milliseconds=1),
        )

    def clear(self) -> None:
        self._entries.clear()
