import pytest
from datetime import datetime, timezone
from app.schemas.event import IngestionSummary, MachineEvent
from app.services.validation import validate_event
from scripts import import_events
from scripts.generate_events import generate_events, write_csv


def test_generated_events_are_unique_and_valid():
    now = datetime.now(timezone.utc)
    events = [MachineEvent.model_validate(raw) for raw in generate_events(500, now=now)]

    assert len({event.event_id for event in events}) == 500
    assert all(validate_event(event, now) for event in events)
    assert {event.machine_id for event in events} <= {f"M-{i:03d}" for i in range(1, 11)}
    assert all(-1 <= event.defect_count <= 4 for event in events)


def test_csv_output_is_importable(tmp_path):
    path = tmp_path / "events.csv"
    write_csv(generate_events(3), path)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "eventId,machineId,eventTime,receivedTime,durationMs,defectCount"
    assert len(lines) == 4


@pytest.mark.asyncio
async def test_import_csv_reconciles_like_the_api(tmp_path, monkeypatch, store):
    rows = generate_events(4)
    rows.append(dict(rows[0]))
    rows.append({**rows[1], "durationMs": -5})
    path = tmp_path / "events.csv"
    write_csv(rows, path)
    monkeypatch.setattr(import_events, "get_event_store", lambda: store)

    summary = await import_events.import_csv(str(path), batch_size=2)

    assert summary == IngestionSummary(accepted=4, deduped=1, rejected=1)
    assert await store.count() == 4
