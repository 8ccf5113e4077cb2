import os

# Settings are read at import time; keep the suite off Postgres and unthrottled
os.environ.setdefault("EVENT_STORE", "memory")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from httpx import AsyncClient, ASGITransport

from app.core.database import get_event_store
from app.main import app
from app.schemas.event import MachineEvent
from app.services.store import InMemoryEventStore

# Fixed processing instant for service-level tests
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_event():
    """Build a MachineEvent with sensible defaults"""

    def _make(
            event_id: str,
            machine_id: str = "M-1",
            duration_ms: int = 1000,
            defect_count: int = 0,
            event_time: datetime | None = None,
            received_time: datetime | None = None
    ) -> MachineEvent:
        return MachineEvent(
            event_id=event_id,
            machine_id=machine_id,
            event_time=event_time or NOW - timedelta(minutes=5),
            received_time=received_time or NOW,
            duration_ms=duration_ms,
            defect_count=defect_count
        )

    return _make


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest_asyncio.fixture
async def client(store):
    """HTTP client against the app, backed by the in-memory store"""
    app.dependency_overrides[get_event_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
