#!/usr/bin/env python3
"""
Benchmark Script for Machine Telemetry API

Posts generated batches to POST /events/batch and reports throughput
"""

import sys
import time
import requests
from pathlib import Path
import statistics

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts.generate_events import generate_events


def benchmark_ingestion(base_url: str, total_events: int = 100000, batch_size: int = 1000):
    """Benchmark event ingestion"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Ingesting {total_events:,} events")
    print(f"{'=' * 60}")

    totals = {"accepted": 0, "deduped": 0, "updated": 0, "rejected": 0}
    batch_times = []

    start_time = time.time()

    for i in range(0, total_events, batch_size):
        events = generate_events(min(batch_size, total_events - i))
        batch_start = time.time()

        try:
            response = requests.post(f"{base_url}/events/batch", json=events, timeout=30)

            if response.status_code == 200:
                for key, value in response.json().items():
                    totals[key] += value
            else:
                print(f"Error in batch {i // batch_size}: Status {response.status_code}")

        except requests.RequestException as e:
            print(f"Error in batch {i // batch_size}: {e}")

        batch_time = time.time() - batch_start
        batch_times.append(batch_time)

        if (i // batch_size) % 10 == 0:
            print(f"Progress: {i + len(events):,} / {total_events:,} events | "
                  f"Batch time: {batch_time:.2f}s")

    total_time = time.time() - start_time

    print(f"\n{'=' * 60}")
    print(f"INGESTION RESULTS")
    print(f"{'=' * 60}")
    print(f"Total events:        {total_events:,}")
    print(f"Accepted:            {totals['accepted']:,}")
    print(f"Deduped:             {totals['deduped']:,}")
    print(f"Updated:             {totals['updated']:,}")
    print(f"Rejected:            {totals['rejected']:,}")
    print(f"Total time:          {total_time:.2f}s")
    print(f"Events/sec:          {total_events / total_time:,.0f}")
    print(f"Avg batch time:      {statistics.mean(batch_times):.2f}s")
    print(f"Min batch time:      {min(batch_times):.2f}s")
    print(f"Max batch time:      {max(batch_times):.2f}s")
    print(f"{'=' * 60}\n")

    return total_time


def main():
    base_url = "http://localhost:8000"

    print("\n" + "=" * 60)
    print("MACHINE TELEMETRY API - INGESTION BENCHMARK")
    print("=" * 60)
    print(f"Target: {base_url}")
    print("=" * 60)

    try:
        response = requests.get(f"{base_url}/health", timeout=5)
        if response.status_code != 200:
            print("Error: API is not healthy")
            sys.exit(1)
    except requests.RequestException as e:
        print(f"Error: Cannot connect to API: {e}")
        sys.exit(1)

    benchmark_ingestion(base_url, total_events=100000, batch_size=1000)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
