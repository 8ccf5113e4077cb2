from fastapi import APIRouter, Body, Depends, Header, HTTPException, status
from app.core.config import settings
from app.core.database import get_event_store
from app.core.errors import EventStoreError, StoreUnavailableError
from app.schemas.event import IngestionSummary, MachineEvent
from app.services.ingestion import IngestionService
from app.services.store import EventStore
import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/events", tags=["events"])


def store_error_to_http(e: EventStoreError) -> HTTPException:
    if isinstance(e, StoreUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event store unavailable"
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to ingest events"
    )


@router.post("/batch", response_model=IngestionSummary)
async def ingest_batch(
        events: list[MachineEvent] = Body(...),
        store: EventStore = Depends(get_event_store)
):
    """
    Ingest a batch of machine events.

    - Invalid events (duration outside 0..6h, event time >15 min ahead) are rejected
    - Repeats of a stored payload are deduped
    - A differing payload replaces the stored one only if its receivedTime is later

    The batch commits as a whole or not at all.
    """
    if len(events) > settings.max_batch_size:
        raise HTTPException(
            status_code=422,
            detail=f"Batch size cannot exceed {settings.max_batch_size} events"
        )

    try:
        service = IngestionService(store)
        return await service.ingest_batch(events)

    except EventStoreError as e:
        logger.error("ingestion_failed", error=str(e), batch_size=len(events))
        raise store_error_to_http(e)


@router.get("/{event_id}", response_model=MachineEvent)
async def get_event(
        event_id: str,
        store: EventStore = Depends(get_event_store)
):
    """Current stored version of an event"""
    try:
        event = await store.get(event_id)
    except EventStoreError as e:
        logger.error("event_lookup_failed", event_id=event_id, error=str(e))
        raise store_error_to_http(e)

    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found"
        )
    return event


@router.delete("")
async def clear_events(
        x_api_key: str | None = Header(default=None),
        store: EventStore = Depends(get_event_store)
):
    """Delete every stored event (administrative, requires the configured API key)"""
    if not settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Bulk clear is disabled: no API key configured"
        )

    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )

    try:
        deleted = await store.clear()
    except EventStoreError as e:
        logger.error("clear_events_failed", error=str(e))
        raise store_error_to_http(e)

    return {"deleted": deleted}
