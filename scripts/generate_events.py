#!/usr/bin/env python3
"""
Synthetic Machine Event Generator

Usage:
    python scripts/generate_events.py <count> [output.csv]

Without an output path, prints the batch as a JSON array ready for
POST /events/batch.
"""

import sys
import csv
import json
import random
from uuid import uuid4
from datetime import datetime, timedelta, timezone
from pathlib import Path

CSV_HEADERS = ["eventId", "machineId", "eventTime", "receivedTime", "durationMs", "defectCount"]


def generate_events(count: int, machines: int = 10, now: datetime | None = None) -> list[dict]:
    """
    Generate a batch of unique, valid events

    - 10 machines (M-001 .. M-010) by default
    - eventTime within the last hour, receivedTime = now
    - durationMs between 100ms and just under 6 hours
    - 10% of events carry the unknown defect sentinel (-1), otherwise 0-4
    """
    now = now or datetime.now(timezone.utc)
    events = []

    for _ in range(count):
        events.append({
            "eventId": str(uuid4()),
            "machineId": f"M-{random.randint(1, machines):03d}",
            "eventTime": (now - timedelta(seconds=random.randrange(3600))).isoformat(),
            "receivedTime": now.isoformat(),
            "durationMs": 100 + random.randrange(20_000_000),
            "defectCount": -1 if random.randrange(10) == 0 else random.randrange(5)
        })

    return events


def write_csv(events: list[dict], file_path: Path) -> None:
    with open(file_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=CSV_HEADERS)
        writer.writeheader()
        writer.writerows(events)


def main():
    if len(sys.argv) not in (2, 3):
        print("Usage: python scripts/generate_events.py <count> [output.csv]")
        sys.exit(1)

    events = generate_events(int(sys.argv[1]))

    if len(sys.argv) == 3:
        write_csv(events, Path(sys.argv[2]))
        print(f"Wrote {len(events)} events to {sys.argv[2]}")
    else:
        print(json.dumps(events, indent=2))


if __name__ == "__main__":
    main()
