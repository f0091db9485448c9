"""Statistics read endpoints and summary regeneration.

GET  /api/v1/stats/daily               -- daily rows for a date or a date range
GET  /api/v1/stats/hourly/{date}       -- 24-slot view of a business day
GET  /api/v1/stats/hourly              -- raw rows of the last N hours
GET  /api/v1/stats/summary/{date}      -- stored summary of a day
POST /api/v1/stats/summary/{date}      -- regenerate it
GET  /api/v1/stats/summaries           -- last N days of summaries
GET  /api/v1/stats/chart               -- chart points of the last N days
"""

from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from casefleet.dependencies import DbSession
from casefleet.models.hourly_stat import WorkerType
from casefleet.schemas.stats import (
    ChartPoint,
    DailyStatResponse,
    DailySummaryResponse,
    HourlyStatResponse,
    HourSlot,
)
from casefleet.services import daily_stats, hourly_stats, summary
from casefleet.services.periods import business_date

router = APIRouter(prefix="/api/v1/stats", tags=["stats"])

DEFAULT_WORKER_TYPE = WorkerType.app_update.value


def _validate_date(value: str) -> str:
    try:
        return date_type.fromisoformat(value).isoformat()
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid date {value!r}, expected YYYY-MM-DD")


@router.get("/daily", response_model=list[DailyStatResponse])
async def list_daily_stats(
    db: DbSession,
    date: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[DailyStatResponse]:
    """Daily rows of one date (default today) or of an inclusive date range."""
    if start_date or end_date:
        if not (start_date and end_date):
            raise HTTPException(status_code=422, detail="start_date and end_date go together")
        rows = await daily_stats.get_by_date_range(
            db, _validate_date(start_date), _validate_date(end_date), fuero, worker_type
        )
    else:
        rows = await daily_stats.get_day(db, _validate_date(date) if date else business_date(), worker_type)
        if fuero is not None:
            rows = [row for row in rows if row.fuero == fuero]
    return [DailyStatResponse.model_validate(row) for row in rows]


@router.get("/hourly/{date}", response_model=list[HourSlot])
async def day_by_hour(
    date: str,
    db: DbSession,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[HourSlot]:
    slots = await hourly_stats.get_day_by_hour(db, _validate_date(date), fuero, worker_type)
    return [HourSlot(**slot) for slot in slots]


@router.get("/hourly", response_model=list[HourlyStatResponse])
async def last_hours(
    db: DbSession,
    hours: int = Query(default=24, ge=1, le=168),
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[HourlyStatResponse]:
    rows = await hourly_stats.get_last_n_hours(db, hours, fuero, worker_type)
    return [HourlyStatResponse.model_validate(row) for row in rows]


@router.get("/summary/{date}", response_model=DailySummaryResponse)
async def get_summary(
    date: str,
    db: DbSession,
    worker_type: str = DEFAULT_WORKER_TYPE,
) -> DailySummaryResponse:
    stored = await summary.get_summary(db, _validate_date(date), worker_type)
    if stored is None:
        raise HTTPException(status_code=404, detail="Summary not generated")
    return DailySummaryResponse.model_validate(stored)


@router.post("/summary/{date}", response_model=DailySummaryResponse)
async def regenerate_summary(
    date: str,
    db: DbSession,
    worker_type: str = DEFAULT_WORKER_TYPE,
) -> DailySummaryResponse:
    """Rebuild the summary of ``date`` from the current daily and hourly rows."""
    generated = await summary.generate_summary(db, _validate_date(date), worker_type)
    return DailySummaryResponse.model_validate(generated)


@router.get("/summaries", response_model=list[DailySummaryResponse])
async def last_days(
    db: DbSession,
    days: int = Query(default=7, ge=1, le=90),
    worker_type: str = DEFAULT_WORKER_TYPE,
) -> list[DailySummaryResponse]:
    rows = await summary.get_last_n_days(db, days, worker_type)
    return [DailySummaryResponse.model_validate(row) for row in rows]


@router.get("/chart", response_model=list[ChartPoint])
async def chart(
    db: DbSession,
    days: int = Query(default=30, ge=1, le=365),
    worker_type: str = DEFAULT_WORKER_TYPE,
) -> list[ChartPoint]:
    return [ChartPoint(**point) for point in await summary.get_chart_data(db, days, worker_type)]
