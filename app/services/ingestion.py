from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable
from app.schemas.event import IngestionSummary, MachineEvent, same_payload
from app.services.store import EventStore
from app.services.validation import validate_event
import structlog

logger = structlog.get_logger()


@dataclass
class Reconciliation:
    """Outcome of reconciling one validated batch against stored versions"""

    accepted: int = 0
    deduped: int = 0
    updated: int = 0
    writes: dict[str, MachineEvent] = field(default_factory=dict)


def reconcile(
        batch: Iterable[MachineEvent],
        existing: dict[str, MachineEvent]
) -> Reconciliation:
    """
    Decide accept / dedupe / update for each event, in batch order.

    ``existing`` maps event_id to the stored version. Each decision is made
    against the latest known version of the id, so repeats inside one batch
    are reconciled against each other as well as against the store. A
    differing payload only wins when its received_time is strictly later.
    """
    known = dict(existing)
    outcome = Reconciliation()

    for event in batch:
        current = known.get(event.event_id)

        if current is None:
            outcome.accepted += 1
        elif same_payload(current, event):
            outcome.deduped += 1
            continue
        elif event.received_time > current.received_time:
            outcome.updated += 1
        else:
            # Late or concurrent update carrying an older receipt time
            outcome.deduped += 1
            continue

        known[event.event_id] = event
        outcome.writes[event.event_id] = event

    return outcome


class IngestionService:
    """Service for ingesting event batches idempotently"""

    def __init__(
            self,
            store: EventStore,
            clock: Callable[[], datetime] | None = None
    ):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest_batch(self, events: list[MachineEvent]) -> IngestionSummary:
        """
        Validate, reconcile and persist one batch.

        The bulk read and the resulting writes run inside a single store
        unit of work; store errors propagate and leave nothing committed.

        Returns:
            IngestionSummary with accepted/deduped/updated/rejected counts
        """
        now = self.clock()
        valid = [event for event in events if validate_event(event, now)]
        rejected = len(events) - len(valid)

        if not valid:
            logger.info("batch_ingested", total=len(events), accepted=0,
                        deduped=0, updated=0, rejected=rejected)
            return IngestionSummary(rejected=rejected)

        async with self.store.unit_of_work() as uow:
            existing = await uow.find_by_ids(event.event_id for event in valid)
            outcome = reconcile(valid, existing)

            if outcome.writes:
                await uow.upsert_all(list(outcome.writes.values()))

        logger.info(
            "batch_ingested",
            total=len(events),
            accepted=outcome.accepted,
            deduped=outcome.deduped,
            updated=outcome.updated,
            rejected=rejected
        )

        return IngestionSummary(
            accepted=outcome.accepted,
            deduped=outcome.deduped,
            updated=outcome.updated,
            rejected=rejected
        )
