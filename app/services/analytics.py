from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List
from app.services.store import EventStore, LineTotals
import structlog

logger = structlog.get_logger()

# Defects per hour at or above which a machine is flagged
HEALTHY_RATE_THRESHOLD = 2.0

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class MachineStats:
    machine_id: str
    start: datetime
    end: datetime
    events_count: int
    defects_count: int
    avg_defect_rate: float
    status: str


@dataclass(frozen=True)
class TopDefectLine:
    line_id: str
    total_defects: int
    event_count: int
    defects_percent: float


def window_hours(start: datetime, end: datetime) -> float:
    """Whole elapsed seconds of the window, in hours"""
    return ((end - start) // timedelta(seconds=1)) / 3600


def defect_rate(defects_count: int, start: datetime, end: datetime) -> float:
    hours = window_hours(start, end)
    if hours <= 0:
        return 0.0
    return defects_count / hours


def health_status(avg_defect_rate: float) -> str:
    return "Healthy" if avg_defect_rate < HEALTHY_RATE_THRESHOLD else "Warning"


def defects_percent(total_defects: int, event_count: int) -> float:
    """Defects per 100 events, rounded half-up to 2 decimals"""
    if event_count <= 0:
        return 0.0
    raw = Decimal(total_defects) * 100 / Decimal(event_count)
    return float(raw.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def rank_lines(lines: List[LineTotals]) -> List[LineTotals]:
    """Most defects first; equal totals ordered by line id"""
    return sorted(lines, key=lambda line: (-line.total_defects, line.line_id))


class AnalyticsService:
    """Read-side statistics over stored events"""

    def __init__(self, store: EventStore):
        self.store = store

    async def compute_stats(
            self,
            machine_id: str,
            start: datetime,
            end: datetime
    ) -> MachineStats:
        """Event count, defect total and defect rate for one machine over [start, end)"""
        if end <= start:
            events_count, defects_count = 0, 0
        else:
            totals = await self.store.window_totals(machine_id, start, end)
            events_count, defects_count = totals.events_count, totals.defects_count

        rate = defect_rate(defects_count, start, end)

        logger.info(
            "stats_computed",
            machine_id=machine_id,
            events_count=events_count,
            defects_count=defects_count
        )

        return MachineStats(
            machine_id=machine_id,
            start=start,
            end=end,
            events_count=events_count,
            defects_count=defects_count,
            avg_defect_rate=rate,
            status=health_status(rate)
        )

    async def top_defect_lines(
            self,
            start: datetime,
            end: datetime,
            limit: int = 10
    ) -> List[TopDefectLine]:
        """Lines ranked by total defects over [start, end), truncated to limit"""
        if limit <= 0 or end <= start:
            return []

        lines = rank_lines(await self.store.line_totals(start, end))[:limit]

        logger.info("top_defect_lines_computed", lines=len(lines), limit=limit)

        return [
            TopDefectLine(
                line_id=line.line_id,
                total_defects=line.total_defects,
                event_count=line.event_count,
                defects_percent=defects_percent(line.total_defects, line.event_count)
            )
            for line in lines
        ]
