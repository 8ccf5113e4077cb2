import asyncio
from contextlib import asynccontextmanager, contextmanager, nullcontext
from datetime import datetime
from typing import AsyncIterator, Iterable
from sqlalchemy import case, delete, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.core.errors import StoreUnavailableError, TransactionFailedError
from app.models.event import MachineEventRow
from app.schemas.event import UNKNOWN_DEFECT_COUNT, MachineEvent, as_utc
from app.services.store import EventStore, EventUnitOfWork, LineTotals, WindowTotals
import structlog

logger = structlog.get_logger()

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_PAYLOAD_COLUMNS = ("machine_id", "event_time", "received_time", "duration_ms", "defect_count")

# Rows per INSERT statement, keeps bind parameters under driver limits
_UPSERT_CHUNK = 500

# One advisory lock per distinct hashtext(id), acquired in key order
_LOCK_IDS = text(
    "SELECT pg_advisory_xact_lock(k) FROM ("
    "SELECT DISTINCT hashtext(id) AS k FROM unnest(CAST(:ids AS text[])) AS id "
    "ORDER BY k) AS keys"
)

# Sentinel -1 contributes nothing to defect sums
_DEFECTS = case(
    (MachineEventRow.defect_count == UNKNOWN_DEFECT_COUNT, 0),
    else_=MachineEventRow.defect_count
)


def _to_event(row: MachineEventRow) -> MachineEvent:
    # SQLite hands back naive datetimes
    return MachineEvent(
        event_id=row.event_id,
        machine_id=row.machine_id,
        event_time=as_utc(row.event_time),
        received_time=as_utc(row.received_time),
        duration_ms=row.duration_ms,
        defect_count=row.defect_count
    )


def _to_values(event: MachineEvent) -> dict:
    return {
        "event_id": event.event_id,
        "machine_id": event.machine_id,
        "event_time": event.event_time,
        "received_time": event.received_time,
        "duration_ms": event.duration_ms,
        "defect_count": event.defect_count
    }


@contextmanager
def _store_errors(operation: str):
    """Translate SQLAlchemy failures into store errors"""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error("store_unavailable", operation=operation, error=str(e))
        raise StoreUnavailableError(str(e)) from e
    except SQLAlchemyError as e:
        logger.error("transaction_failed", operation=operation, error=str(e))
        raise TransactionFailedError(str(e)) from e


class _SqlUnitOfWork(EventUnitOfWork):

    def __init__(self, session: AsyncSession, dialect: str):
        self.session = session
        self.dialect = dialect

    async def _lock_ids(self, event_ids: list[str]) -> None:
        """Transaction locks for every id, one statement, ordered by lock key"""
        await self.session.execute(_LOCK_IDS, {"ids": event_ids})

    async def find_by_ids(self, event_ids: Iterable[str]) -> dict[str, MachineEvent]:
        ids = sorted(set(event_ids))
        if not ids:
            return {}

        if self.dialect == "postgresql":
            await self._lock_ids(ids)

        stmt = select(MachineEventRow).where(MachineEventRow.event_id.in_(ids))
        result = await self.session.execute(stmt)

        return {row.event_id: _to_event(row) for row in result.scalars()}

    async def upsert_all(self, events: list[MachineEvent]) -> None:
        if not events:
            return

        insert = _INSERTS[self.dialect]

        for offset in range(0, len(events), _UPSERT_CHUNK):
            chunk = events[offset:offset + _UPSERT_CHUNK]
            stmt = insert(MachineEventRow).values([_to_values(event) for event in chunk])
            stmt = stmt.on_conflict_do_update(
                index_elements=['event_id'],
                set_={column: stmt.excluded[column] for column in _PAYLOAD_COLUMNS}
            )
            await self.session.execute(stmt)


class SqlAlchemyEventStore(EventStore):
    """
    Event store on an async SQLAlchemy engine.

    On PostgreSQL, concurrent units of work are serialized per event id with
    transaction-scoped advisory locks taken before the bulk read. Other
    supported dialects (SQLite) serialize every unit of work in-process.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.dialect = session_factory.kw["bind"].dialect.name

        if self.dialect not in _INSERTS:
            raise ValueError(f"Unsupported database dialect: {self.dialect}")

        self._local_lock = asyncio.Lock()

    def _serialized(self):
        if self.dialect == "postgresql":
            return nullcontext()
        return self._local_lock

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[EventUnitOfWork]:
        async with self._serialized():
            with _store_errors("unit_of_work"):
                async with self.session_factory() as session:
                    async with session.begin():
                        yield _SqlUnitOfWork(session, self.dialect)

    async def get(self, event_id: str) -> MachineEvent | None:
        with _store_errors("get"):
            async with self.session_factory() as session:
                row = await session.get(MachineEventRow, event_id)
                return _to_event(row) if row is not None else None

    async def window_totals(
            self,
            machine_id: str,
            start: datetime,
            end: datetime
    ) -> WindowTotals:
        stmt = (
            select(
                func.count(MachineEventRow.event_id),
                func.coalesce(func.sum(_DEFECTS), 0)
            )
            .where(MachineEventRow.machine_id == machine_id)
            .where(MachineEventRow.event_time >= start)
            .where(MachineEventRow.event_time < end)
        )

        with _store_errors("window_totals"):
            async with self.session_factory() as session:
                events_count, defects_count = (await session.execute(stmt)).one()

        return WindowTotals(events_count=int(events_count), defects_count=int(defects_count))

    async def line_totals(self, start: datetime, end: datetime) -> list[LineTotals]:
        stmt = (
            select(
                MachineEventRow.machine_id,
                func.count(MachineEventRow.event_id),
                func.coalesce(func.sum(_DEFECTS), 0)
            )
            .where(MachineEventRow.event_time >= start)
            .where(MachineEventRow.event_time < end)
            .group_by(MachineEventRow.machine_id)
        )

        with _store_errors("line_totals"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)

                return [
                    LineTotals(line_id=row[0], event_count=int(row[1]), total_defects=int(row[2]))
                    for row in result
                ]

    async def count(self) -> int:
        with _store_errors("count"):
            async with self.session_factory() as session:
                result = await session.execute(select(func.count(MachineEventRow.event_id)))
                return result.scalar_one()

    async def clear(self) -> int:
        async with self._serialized():
            with _store_errors("clear"):
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await session.execute(delete(MachineEventRow))

        logger.info("event_store_cleared", backend=self.dialect, removed=result.rowcount)
        return result.rowcount
