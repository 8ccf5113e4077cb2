# GET /stats, GET /stats/top-defect-lines

from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import datetime, timezone
from typing import List
from app.core.database import get_event_store
from app.core.errors import EventStoreError, StoreUnavailableError
from app.schemas.analytics import MachineStatsResponse, TopDefectLineResponse
from app.schemas.event import as_utc
from app.services.analytics import AnalyticsService
from app.services.store import EventStore
import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/stats", tags=["analytics"])


def iso_instant(value: datetime) -> str:
    """UTC ISO-8601 with a Z suffix, e.g. 2024-01-01T10:00:00Z"""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def query_failed(e: EventStoreError, detail: str) -> HTTPException:
    if isinstance(e, StoreUnavailableError):
        return HTTPException(status_code=503, detail="Event store unavailable")
    return HTTPException(status_code=500, detail=detail)


@router.get("", response_model=MachineStatsResponse)
async def get_stats(
        machine_id: str = Query(..., alias="machineId", min_length=1),
        start: datetime = Query(..., description="Window start, inclusive (ISO-8601)"),
        end: datetime = Query(..., description="Window end, exclusive (ISO-8601)"),
        store: EventStore = Depends(get_event_store)
):
    """
    Event and defect totals for one machine over [start, end).

    Events with defectCount = -1 are counted but add no defects.
    A zero-length or inverted window yields zeros.
    """
    start, end = as_utc(start), as_utc(end)

    try:
        stats = await AnalyticsService(store).compute_stats(machine_id, start, end)
    except EventStoreError as e:
        logger.error("stats_query_failed", machine_id=machine_id, error=str(e))
        raise query_failed(e, "Failed to fetch machine stats")

    logger.info(
        "stats_query_executed",
        machine_id=machine_id,
        start=iso_instant(start),
        end=iso_instant(end)
    )

    return MachineStatsResponse(
        machine_id=stats.machine_id,
        start=iso_instant(stats.start),
        end=iso_instant(stats.end),
        events_count=stats.events_count,
        defects_count=stats.defects_count,
        avg_defect_rate=stats.avg_defect_rate,
        status=stats.status
    )


@router.get("/top-defect-lines", response_model=List[TopDefectLineResponse])
async def get_top_defect_lines(
        from_time: datetime = Query(..., alias="from", description="Window start, inclusive (ISO-8601)"),
        to_time: datetime = Query(..., alias="to", description="Window end, exclusive (ISO-8601)"),
        limit: int = Query(default=10, description="Number of lines to return"),
        store: EventStore = Depends(get_event_store)
):
    """
    Lines ranked by total defects over [from, to).

    Ties are broken by lineId. defectsPercent is defects per 100 events.
    """
    from_time, to_time = as_utc(from_time), as_utc(to_time)

    try:
        lines = await AnalyticsService(store).top_defect_lines(from_time, to_time, limit)
    except EventStoreError as e:
        logger.error("top_defect_lines_query_failed", error=str(e))
        raise query_failed(e, "Failed to fetch top defect lines")

    logger.info(
        "top_defect_lines_query_executed",
        from_time=iso_instant(from_time),
        to_time=iso_instant(to_time),
        limit=limit
    )

    return [
        TopDefectLineResponse(
            line_id=line.line_id,
            total_defects=line.total_defects,
            event_count=line.event_count,
            defects_percent=line.defects_percent
        )
        for line in lines
    ]
