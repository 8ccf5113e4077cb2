"""Event store interface and the in-memory implementation."""
import asyncio
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Iterable
import structlog
from app.schemas.event import UNKNOWN_DEFECT_COUNT, MachineEvent

logger = structlog.get_logger()


@dataclass(frozen=True)
class WindowTotals:
    events_count: int
    defects_count: int


@dataclass(frozen=True)
class LineTotals:
    line_id: str
    event_count: int
    total_defects: int


class EventUnitOfWork(ABC):
    """Reads and writes that commit or roll back together."""

    @abstractmethod
    async def find_by_ids(self, event_ids: Iterable[str]) -> dict[str, MachineEvent]:
        """
        Bulk lookup of the stored version of each id.

        Ids with no stored event are absent from the result.
        """

    @abstractmethod
    async def upsert_all(self, events: list[MachineEvent]) -> None:
        """Stage inserts/overwrites keyed by event_id; applied on commit."""


class EventStore(ABC):
    """
    Durable keyed store of machine events.

    ``unit_of_work`` is the atomicity boundary for ingestion: a bulk read
    and the writes decided from it run in one transaction, serialized
    against any other unit of work touching the same event ids.
    """

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[EventUnitOfWork]:
        """Async context manager; commits on clean exit, rolls back on error."""

    @abstractmethod
    async def get(self, event_id: str) -> MachineEvent | None:
        pass

    @abstractmethod
    async def window_totals(
            self,
            machine_id: str,
            start: datetime,
            end: datetime
    ) -> WindowTotals:
        """Count and sentinel-aware defect sum for one machine over [start, end)."""

    @abstractmethod
    async def line_totals(self, start: datetime, end: datetime) -> list[LineTotals]:
        """Per-machine count and sentinel-aware defect sum over [start, end)."""

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def clear(self) -> int:
        """Delete every stored event; returns how many were removed."""


def defects_or_zero(event: MachineEvent) -> int:
    if event.defect_count == UNKNOWN_DEFECT_COUNT:
        return 0
    return event.defect_count


class _InMemoryUnitOfWork(EventUnitOfWork):

    def __init__(self, events: dict[str, MachineEvent]):
        self._events = events
        self.staged: dict[str, MachineEvent] = {}

    async def find_by_ids(self, event_ids: Iterable[str]) -> dict[str, MachineEvent]:
        return {
            event_id: self._events[event_id]
            for event_id in set(event_ids)
            if event_id in self._events
        }

    async def upsert_all(self, events: list[MachineEvent]) -> None:
        for event in events:
            self.staged[event.event_id] = event


class InMemoryEventStore(EventStore):
    """Dict-backed store; one lock serializes all units of work."""

    def __init__(self, events: Iterable[MachineEvent] = ()):
        self._events: dict[str, MachineEvent] = {e.event_id: e for e in events}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[EventUnitOfWork]:
        async with self._lock:
            uow = _InMemoryUnitOfWork(self._events)
            yield uow
            # Only reached when the block exits cleanly
            self._events.update(uow.staged)

    async def get(self, event_id: str) -> MachineEvent | None:
        return self._events.get(event_id)

    def _in_window(self, start: datetime, end: datetime) -> list[MachineEvent]:
        return [e for e in self._events.values() if start <= e.event_time < end]

    async def window_totals(
            self,
            machine_id: str,
            start: datetime,
            end: datetime
    ) -> WindowTotals:
        matching = [e for e in self._in_window(start, end) if e.machine_id == machine_id]
        return WindowTotals(
            events_count=len(matching),
            defects_count=sum(defects_or_zero(e) for e in matching)
        )

    async def line_totals(self, start: datetime, end: datetime) -> list[LineTotals]:
        counts: dict[str, int] = {}
        defects: dict[str, int] = {}

        for event in self._in_window(start, end):
            counts[event.machine_id] = counts.get(event.machine_id, 0) + 1
            defects[event.machine_id] = defects.get(event.machine_id, 0) + defects_or_zero(event)

        return [
            LineTotals(line_id=line_id, event_count=counts[line_id], total_defects=defects[line_id])
            for line_id in counts
        ]

    async def count(self) -> int:
        return len(self._events)

    async def clear(self) -> int:
        async with self._lock:
            removed = len(self._events)
            self._events.clear()

        logger.info("event_store_cleared", backend="memory", removed=removed)
        return removed
