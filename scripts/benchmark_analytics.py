#!/usr/bin/env python3
"""
Benchmark Script for Machine Telemetry API

Measures latency of the stats queries over the last day
"""

import sys
import time
import requests
from datetime import datetime, timedelta, timezone
import statistics


def iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def benchmark_queries(base_url: str):
    """Benchmark analytics queries"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Query Performance")
    print(f"{'=' * 60}")

    now = datetime.now(timezone.utc).replace(microsecond=0)
    hour_ago, day_ago = iso(now - timedelta(hours=1)), iso(now - timedelta(days=1))

    queries = [
        ("Stats (1 hour)", f"{base_url}/stats",
         {"machineId": "M-001", "start": hour_ago, "end": iso(now)}),
        ("Stats (1 day)", f"{base_url}/stats",
         {"machineId": "M-001", "start": day_ago, "end": iso(now)}),
        ("Top Lines (5)", f"{base_url}/stats/top-defect-lines",
         {"from": day_ago, "to": iso(now), "limit": 5}),
        ("Top Lines (100)", f"{base_url}/stats/top-defect-lines",
         {"from": day_ago, "to": iso(now), "limit": 100}),
    ]

    results = []

    for name, url, params in queries:
        times = []

        # Run each query 5 times
        for _ in range(5):
            start = time.time()
            try:
                response = requests.get(url, params=params, timeout=30)
                elapsed = (time.time() - start) * 1000  # Convert to ms

                if response.status_code == 200:
                    times.append(elapsed)
                else:
                    print(f"Error in {name}: Status {response.status_code}")
            except requests.RequestException as e:
                print(f"Error in {name}: {e}")

        if times:
            ordered = sorted(times)
            results.append({
                "name": name,
                "p50": statistics.median(times),
                "p95": ordered[int(len(times) * 0.95)] if len(times) > 1 else times[0],
                "p99": ordered[int(len(times) * 0.99)] if len(times) > 1 else times[0],
                "avg": statistics.mean(times),
            })

    print(f"\n{'Query':<25} {'P50':>10} {'P95':>10} {'P99':>10} {'Avg':>10}")
    print(f"{'-' * 70}")
    for r in results:
        print(f"{r['name']:<25} {r['p50']:>9.0f}ms {r['p95']:>9.0f}ms "
              f"{r['p99']:>9.0f}ms {r['avg']:>9.0f}ms")

    print(f"{'=' * 60}\n")

    return results


def main():
    base_url = "http://localhost:8000"

    print("\n" + "=" * 60)
    print("MACHINE TELEMETRY API - QUERY BENCHMARK")
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

    benchmark_queries(base_url)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
