"""
CSV Import Script for Machine Events

Usage:
    python scripts/import_events.py <path-to-csv>

CSV Format:
    eventId,machineId,eventTime,receivedTime,durationMs,defectCount

Rows go through the same validation and reconciliation as POST /events/batch.
"""

import sys
import csv
import asyncio
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError
from app.core.database import get_event_store, init_models
from app.core.errors import EventStoreError
from app.schemas.event import IngestionSummary, MachineEvent
from app.services.ingestion import IngestionService
from app.services.sql_store import SqlAlchemyEventStore

REQUIRED_HEADERS = {'eventId', 'machineId', 'eventTime', 'receivedTime', 'durationMs', 'defectCount'}


def add_summary(total: IngestionSummary, batch: IngestionSummary) -> IngestionSummary:
    return IngestionSummary(
        accepted=total.accepted + batch.accepted,
        deduped=total.deduped + batch.deduped,
        updated=total.updated + batch.updated,
        rejected=total.rejected + batch.rejected
    )


async def import_csv(file_path: str, batch_size: int = 1000) -> IngestionSummary:
    """
    Import events from CSV file

    Args:
        file_path: Path to CSV file
        batch_size: Number of events to process per batch
    """
    file_path = Path(file_path)

    if not file_path.exists():
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    print(f"Starting import from: {file_path}")

    store = get_event_store()
    if isinstance(store, SqlAlchemyEventStore) and store.dialect == "sqlite":
        await init_models()

    service = IngestionService(store)
    total = IngestionSummary()
    malformed = 0

    with open(file_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        if not REQUIRED_HEADERS.issubset(reader.fieldnames or []):
            print(f"Error: CSV must have headers: {REQUIRED_HEADERS}")
            print(f"Found headers: {reader.fieldnames}")
            sys.exit(1)

        batch = []

        for i, row in enumerate(reader, 1):
            try:
                batch.append(MachineEvent.model_validate(row))
            except ValidationError as e:
                malformed += 1
                print(f"Skipping malformed row {i}: {e.error_count()} error(s)")
                continue

            if len(batch) >= batch_size:
                total = add_summary(total, await service.ingest_batch(batch))
                print(f"Processed {i} rows | Accepted: {total.accepted} | "
                      f"Deduped: {total.deduped} | Updated: {total.updated} | "
                      f"Rejected: {total.rejected}")
                batch = []

        if batch:
            total = add_summary(total, await service.ingest_batch(batch))

    print("\n" + "=" * 50)
    print("Import completed!")
    print(f"Accepted:  {total.accepted}")
    print(f"Deduped:   {total.deduped}")
    print(f"Updated:   {total.updated}")
    print(f"Rejected:  {total.rejected}")
    print(f"Malformed: {malformed}")
    print("=" * 50)

    return total


def main():
    if len(sys.argv) != 2:
        print("Usage: python scripts/import_events.py <path-to-csv>")
        sys.exit(1)

    try:
        asyncio.run(import_csv(sys.argv[1]))
    except EventStoreError as e:
        print(f"Error: import aborted, store failure: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
