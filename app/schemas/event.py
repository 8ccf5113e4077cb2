# Pydantic schemas

from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone

# defectCount value meaning "unknown"; counted as an event, summed as zero
UNKNOWN_DEFECT_COUNT = -1


class MachineEvent(BaseModel):
    """One reported occurrence from a machine, keyed by event_id"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_id: str = Field(..., alias="eventId", min_length=1, max_length=255)
    machine_id: str = Field(..., alias="machineId", min_length=1, max_length=255)
    event_time: datetime = Field(..., alias="eventTime")
    received_time: datetime = Field(..., alias="receivedTime")
    duration_ms: int = Field(..., alias="durationMs")
    defect_count: int = Field(..., alias="defectCount")

    @field_validator('event_id', 'machine_id')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Field cannot be empty or whitespace')
        return v.strip()

    @field_validator('event_time', 'received_time')
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def same_payload(a: MachineEvent, b: MachineEvent) -> bool:
    """Payload equality; received_time is not part of the payload."""
    return (
        a.machine_id == b.machine_id
        and a.duration_ms == b.duration_ms
        and a.defect_count == b.defect_count
        and a.event_time == b.event_time
    )


class IngestionSummary(BaseModel):
    """Per-batch outcome counters"""

    accepted: int = 0
    deduped: int = 0
    updated: int = 0
    rejected: int = 0
