"""Pydantic schemas for the autoscaling manager."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from casefleet.models.hourly_stat import ScalingAction


class ResourceReadings(BaseModel):
    """Host resource sample; usages are fractions in [0, 1]."""

    cpu_usage: float = Field(ge=0)
    memory_usage: float = Field(ge=0, le=1)
    free_memory_mb: Optional[int] = None
    total_memory_mb: Optional[int] = None


class CycleInputs(BaseModel):
    # Actual running workers per fuero, as reported by the process supervisor
    workers: dict[str, int] = Field(default_factory=dict)
    resources: ResourceReadings


class ScalingDecision(BaseModel):
    fuero: str
    current: int
    pending: int
    optimal: int
    action: ScalingAction
    reason: str


class CycleResult(BaseModel):
    cycle_count: int
    within_working_hours: bool
    decisions: list[ScalingDecision]
    alerts_raised: list[str] = Field(default_factory=list)

    @property
    def optimal_workers(self) -> dict[str, int]:
        return {d.fuero: d.optimal for d in self.decisions}


class WorkerReport(BaseModel):
    workers: dict[str, int]


class ManagerStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    config: dict
    workers: dict
    pending: dict
    optimal_workers: dict
    system_resources: Optional[dict] = None
    reported_workers: dict
    is_running: bool
    is_within_working_hours: bool
    last_cycle_at: Optional[datetime] = None
    cycle_count: int
    last_update: datetime


class SnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recorded_at: datetime
    workers: dict
    pending: dict
    optimal_workers: dict
    system_resources: Optional[dict] = None
