from datetime import datetime, timedelta, timezone
from app.schemas.event import MachineEvent

MAX_DURATION_MS = 6 * 60 * 60 * 1000
MAX_FUTURE_SKEW = timedelta(minutes=15)


def validate_event(event: MachineEvent, now: datetime | None = None) -> bool:
    """
    Check a single incoming event.

    Rejects durations outside [0, 6h] and event times more than 15 minutes
    ahead of ``now``. The defect sentinel is not checked here.
    """
    if event.duration_ms < 0 or event.duration_ms > MAX_DURATION_MS:
        return False

    now = now or datetime.now(timezone.utc)
    if event.event_time > now + MAX_FUTURE_SKEW:
        return False

    return True
