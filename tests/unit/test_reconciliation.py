import asyncio
import pytest
from datetime import timedelta
from app.core.errors import TransactionFailedError
from app.schemas.event import IngestionSummary, same_payload
from app.services import store as store_module
from app.services.ingestion import IngestionService, reconcile
from app.services.store import InMemoryEventStore


@pytest.fixture
def service(store, now):
    return IngestionService(store, clock=lambda: now)


# --- Payload equality ---

def test_same_payload_ignores_received_time(make_event, now):
    first = make_event("E-1", received_time=now)
    second = make_event("E-1", received_time=now + timedelta(hours=1))

    assert same_payload(first, second)


@pytest.mark.parametrize("field,value", [
    ("machine_id", "M-2"),
    ("duration_ms", 1001),
    ("defect_count", 3),
])
def test_same_payload_detects_changed_field(make_event, field, value):
    base = make_event("E-1")
    changed = base.model_copy(update={field: value})

    assert not same_payload(base, changed)


def test_same_payload_detects_changed_event_time(make_event, now):
    assert not same_payload(
        make_event("E-1", event_time=now - timedelta(minutes=1)),
        make_event("E-1", event_time=now - timedelta(minutes=2))
    )


# --- Pure reconciliation ---

def test_identical_pair_first_wins(make_event):
    outcome = reconcile([make_event("E-1"), make_event("E-1")], {})

    assert (outcome.accepted, outcome.deduped, outcome.updated) == (1, 1, 0)
    assert list(outcome.writes) == ["E-1"]


def test_newer_received_time_updates_within_batch(make_event, now):
    old = make_event("E-1", duration_ms=1000, received_time=now - timedelta(seconds=100))
    new = make_event("E-1", duration_ms=9999, defect_count=5, received_time=now)

    outcome = reconcile([old, new], {})

    assert (outcome.accepted, outcome.deduped, outcome.updated) == (1, 0, 1)
    assert outcome.writes["E-1"].duration_ms == 9999
    assert outcome.writes["E-1"].defect_count == 5


def test_older_received_time_is_ignored(make_event, now):
    stored = make_event("E-1", duration_ms=5000, received_time=now)
    late = make_event("E-1", duration_ms=1000, received_time=now - timedelta(minutes=5))

    outcome = reconcile([late], {"E-1": stored})

    assert (outcome.accepted, outcome.deduped, outcome.updated) == (0, 1, 0)
    assert outcome.writes == {}


def test_equal_received_time_with_different_payload_is_ignored(make_event, now):
    stored = make_event("E-1", duration_ms=5000, received_time=now)
    rival = make_event("E-1", duration_ms=1000, received_time=now)

    outcome = reconcile([rival], {"E-1": stored})

    assert outcome.deduped == 1
    assert outcome.writes == {}


def test_same_payload_with_later_receipt_is_deduped(make_event, now):
    stored = make_event("E-1", received_time=now - timedelta(minutes=1))
    resent = make_event("E-1", received_time=now)

    outcome = reconcile([resent], {"E-1": stored})

    assert (outcome.deduped, outcome.updated) == (1, 0)
    assert outcome.writes == {}


def test_batch_is_walked_in_order(make_event, now):
    t0, t1, t2 = now - timedelta(seconds=20), now - timedelta(seconds=10), now
    batch = [
        make_event("E-1", duration_ms=100, received_time=t1),
        make_event("E-1", duration_ms=200, received_time=t2),
        make_event("E-1", duration_ms=300, received_time=t0),
        make_event("E-2", duration_ms=50),
    ]

    outcome = reconcile(batch, {})

    assert (outcome.accepted, outcome.deduped, outcome.updated) == (2, 1, 1)
    assert outcome.writes["E-1"].duration_ms == 200
    assert list(outcome.writes) == ["E-1", "E-2"]


def test_unknown_defect_count_passes_through(make_event):
    outcome = reconcile([make_event("E-1", defect_count=-1)], {})

    assert outcome.writes["E-1"].defect_count == -1


# --- Service with a store ---

@pytest.mark.asyncio
async def test_duplicate_in_one_batch_stores_one_row(service, store, make_event):
    result = await service.ingest_batch([make_event("E-1"), make_event("E-1")])

    assert result == IngestionSummary(accepted=1, deduped=1, updated=0, rejected=0)
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_resubmission_across_batches_is_deduped(service, store, make_event):
    await service.ingest_batch([make_event("E-1")])
    result = await service.ingest_batch([make_event("E-1")])

    assert result == IngestionSummary(deduped=1)
    assert await store.count() == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("newer_first", [True, False])
async def test_last_writer_wins_across_batches(service, store, make_event, now, newer_first):
    older = make_event("E-1", duration_ms=1000, received_time=now - timedelta(minutes=1))
    newer = make_event("E-1", duration_ms=9999, defect_count=5, received_time=now)

    for event in ([newer, older] if newer_first else [older, newer]):
        await service.ingest_batch([event])

    saved = await store.get("E-1")
    assert saved == newer


@pytest.mark.asyncio
async def test_invalid_events_are_rejected_and_not_stored(service, store, make_event):
    result = await service.ingest_batch([
        make_event("E-BAD-1", duration_ms=-10),
        make_event("E-BAD-2", duration_ms=22_000_000),
    ])

    assert result == IngestionSummary(rejected=2)
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_future_event_is_rejected(service, make_event, now):
    result = await service.ingest_batch([make_event("E-FUT", event_time=now + timedelta(minutes=20))])

    assert result.rejected == 1


@pytest.mark.asyncio
async def test_update_is_validated_like_an_insert(service, store, make_event, now):
    await service.ingest_batch([make_event("E-1", received_time=now - timedelta(minutes=1))])

    result = await service.ingest_batch([make_event("E-1", duration_ms=-5, received_time=now)])

    assert result == IngestionSummary(rejected=1)
    assert (await store.get("E-1")).duration_ms == 1000


@pytest.mark.asyncio
async def test_all_invalid_batch_never_touches_store(make_event, now):

    class UntouchableStore(InMemoryEventStore):
        def unit_of_work(self):
            raise AssertionError("store should not be used")

    service = IngestionService(UntouchableStore(), clock=lambda: now)
    result = await service.ingest_batch([make_event("E-1", duration_ms=-1)])

    assert result == IngestionSummary(rejected=1)


@pytest.mark.asyncio
async def test_empty_batch(service):
    assert await service.ingest_batch([]) == IngestionSummary()


@pytest.mark.asyncio
async def test_rejection_does_not_affect_other_events(make_event, now):
    valid = [make_event("E-1"), make_event("E-1"), make_event("E-2")]
    invalid = make_event("E-1", duration_ms=-1)

    clean = await IngestionService(InMemoryEventStore(), clock=lambda: now).ingest_batch(valid)
    mixed = await IngestionService(InMemoryEventStore(), clock=lambda: now).ingest_batch(
        [invalid] + valid
    )

    assert mixed.rejected == 1
    assert (mixed.accepted, mixed.deduped, mixed.updated) == (clean.accepted, clean.deduped, clean.updated)


@pytest.mark.asyncio
async def test_failed_write_commits_nothing(service, store, make_event, monkeypatch):

    async def failing_upsert(self, events):
        raise TransactionFailedError("disk full")

    monkeypatch.setattr(store_module._InMemoryUnitOfWork, "upsert_all", failing_upsert)

    with pytest.raises(TransactionFailedError):
        await service.ingest_batch([make_event("E-1"), make_event("E-2")])

    assert await store.count() == 0


@pytest.mark.asyncio
async def test_concurrent_batches_with_distinct_ids(service, store, make_event):
    batches = [[make_event(f"E-CON-{i}", duration_ms=100)] for i in range(20)]

    results = await asyncio.gather(*(service.ingest_batch(batch) for batch in batches))

    assert sum(r.accepted for r in results) == 20
    assert await store.count() == 20


@pytest.mark.asyncio
async def test_concurrent_batches_racing_on_one_id(service, store, make_event):
    results = await asyncio.gather(*(service.ingest_batch([make_event("E-RACE")]) for _ in range(10)))

    assert sum(r.accepted for r in results) == 1
    assert sum(r.deduped for r in results) == 9
    assert await store.count() == 1
