"""Autoscaling manager state, history and configuration.

GET   /api/v1/manager/state    -- latest snapshot and stored config
GET   /api/v1/manager/history  -- snapshots of the last N hours
GET   /api/v1/manager/alerts   -- open manager alerts
PATCH /api/v1/manager/config   -- partial scaling config update
POST  /api/v1/manager/workers  -- supervisor report of running worker counts
"""

from fastapi import APIRouter, HTTPException, Query

from casefleet.dependencies import DbSession
from casefleet.errors import ConfigError
from casefleet.schemas.config import ScalingConfig, ScalingConfigPatch
from casefleet.schemas.manager import ManagerStateResponse, SnapshotResponse, WorkerReport
from casefleet.schemas.stats import AlertResponse
from casefleet.services.autoscaling import AutoscalingManager

router = APIRouter(prefix="/api/v1/manager", tags=["manager"])


@router.get("/state", response_model=ManagerStateResponse)
async def get_state(db: DbSession) -> ManagerStateResponse:
    return ManagerStateResponse.model_validate(await AutoscalingManager(db).get_state())


@router.get("/history", response_model=list[SnapshotResponse])
async def get_history(
    db: DbSession,
    hours: float = Query(default=24, gt=0, le=24),
) -> list[SnapshotResponse]:
    snapshots = await AutoscalingManager(db).get_history(hours_back=hours)
    return [SnapshotResponse.model_validate(s) for s in snapshots]


@router.get("/alerts", response_model=list[AlertResponse])
async def get_alerts(db: DbSession) -> list[AlertResponse]:
    return [AlertResponse.model_validate(a) for a in await AutoscalingManager(db).get_active_alerts()]


@router.patch("/config", response_model=ScalingConfig)
async def patch_config(body: ScalingConfigPatch, db: DbSession) -> ScalingConfig:
    try:
        return await AutoscalingManager(db).update_config(body)
    except ConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/workers", response_model=ManagerStateResponse)
async def report_workers(body: WorkerReport, db: DbSession) -> ManagerStateResponse:
    """Process supervisor callback with the actual running workers per fuero."""
    state = await AutoscalingManager(db).report_workers(body.workers)
    return ManagerStateResponse.model_validate(state)
