from pydantic import BaseModel, ConfigDict, Field
from typing import Literal


class MachineStatsResponse(BaseModel):
    """Event and defect totals for one machine over [start, end)"""

    model_config = ConfigDict(populate_by_name=True)

    machine_id: str = Field(..., alias="machineId")
    start: str
    end: str
    events_count: int = Field(..., alias="eventsCount")
    defects_count: int = Field(..., alias="defectsCount")
    avg_defect_rate: float = Field(..., alias="avgDefectRate")
    status: Literal["Healthy", "Warning"]


class TopDefectLineResponse(BaseModel):
    """One ranked line in the top-defect-lines response"""

    model_config = ConfigDict(populate_by_name=True)

    line_id: str = Field(..., alias="lineId")
    total_defects: int = Field(..., alias="totalDefects")
    event_count: int = Field(..., alias="eventCount")
    defects_percent: float = Field(..., alias="defectsPercent")
