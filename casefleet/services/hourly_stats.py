"""Hourly statistics tier.

Rows are created by the first report of an hourly key (upsert) and then
only touched with atomic ``col = col + n`` updates, so concurrent workers
reporting into the same hour never lose an increment. None of these
functions commit; callers own the unit of work.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.hourly_stat import (
    ErrorType,
    HourlyErrorCount,
    HourlyStat,
    ScalingAction,
    ScalingEvent,
)
from casefleet.schemas.stats import HourlyIncrements, ScalingEventIn
from casefleet.services.periods import last_hour_keys, period_key, utcnow
from casefleet.services.store import append_bounded, upsert

SCALING_EVENT_LIMIT = 60
TOP_ERRORS_LIMIT = 10

HOURLY_KEY = ["date", "hour", "fuero", "worker_type"]
COUNTERS = ("processed", "successful", "failed", "skipped", "movimientos_found")


def _least(current, incoming):
    return case(
        (current.is_(None), incoming),
        (incoming.is_(None), current),
        (incoming < current, incoming),
        else_=current,
    )


def _greatest(current, incoming):
    return case(
        (current.is_(None), incoming),
        (incoming.is_(None), current),
        (incoming > current, incoming),
        else_=current,
    )


async def increment_hourly(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    increments: HourlyIncrements,
    now: Optional[datetime] = None,
) -> None:
    now = now or utcnow()
    date, hour = period_key(now)
    elapsed = increments.processing_time_ms
    table = HourlyStat.__table__

    stmt = upsert(session, HourlyStat).values(
        date=date,
        hour=hour,
        fuero=fuero,
        worker_type=worker_type,
        total_processing_time=elapsed or 0,
        min_processing_time=elapsed,
        max_processing_time=elapsed,
        created_at=now,
        last_update=now,
        **{name: getattr(increments, name) for name in COUNTERS},
    )
    excluded = stmt.excluded
    set_ = {name: table.c[name] + excluded[name] for name in COUNTERS}
    set_["total_processing_time"] = table.c.total_processing_time + excluded.total_processing_time
    set_["min_processing_time"] = _least(table.c.min_processing_time, excluded.min_processing_time)
    set_["max_processing_time"] = _greatest(table.c.max_processing_time, excluded.max_processing_time)
    set_["last_update"] = excluded.last_update

    await session.execute(stmt.on_conflict_do_update(index_elements=HOURLY_KEY, set_=set_))


async def record_error_type(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    error_type: ErrorType,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    date, hour = period_key(now or utcnow())
    table = HourlyErrorCount.__table__

    stmt = upsert(session, HourlyErrorCount).values(
        date=date,
        hour=hour,
        fuero=fuero,
        worker_type=worker_type,
        error_type=ErrorType(error_type).value,
        count=1,
        last_message=message,
    )
    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=HOURLY_KEY + ["error_type"],
            set_={
                "count": table.c.count + stmt.excluded.count,
                "last_message": func.coalesce(stmt.excluded.last_message, table.c.last_message),
            },
        )
    )


async def record_manager_cycle(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    active_workers: int,
    pending: int,
    scaling_event: Optional[ScalingEventIn] = None,
    now: Optional[datetime] = None,
) -> None:
    """Feed one manager cycle into the hour's worker and backlog gauges."""
    now = now or utcnow()
    date, hour = period_key(now)
    table = HourlyStat.__table__

    stmt = upsert(session, HourlyStat).values(
        date=date,
        hour=hour,
        fuero=fuero,
        worker_type=worker_type,
        manager_cycles=1,
        active_workers_total=active_workers,
        max_active_workers=active_workers,
        pending_at_start=pending,
        pending_at_end=pending,
        created_at=now,
        last_update=now,
    )
    excluded = stmt.excluded
    await session.execute(
        stmt.on_conflict_do_update(
            index_elements=HOURLY_KEY,
            set_={
                "manager_cycles": table.c.manager_cycles + excluded.manager_cycles,
                "active_workers_total": table.c.active_workers_total + excluded.active_workers_total,
                "max_active_workers": _greatest(table.c.max_active_workers, excluded.max_active_workers),
                # Start of hour is whatever the first cycle saw
                "pending_at_start": func.coalesce(table.c.pending_at_start, excluded.pending_at_start),
                "pending_at_end": excluded.pending_at_end,
                "last_update": excluded.last_update,
            },
        )
    )

    if scaling_event is not None and scaling_event.action != ScalingAction.no_change:
        await append_bounded(
            session,
            ScalingEvent,
            scope={"date": date, "hour": hour, "fuero": fuero, "worker_type": worker_type},
            values={
                "occurred_at": now,
                "action": scaling_event.action.value,
                "from_workers": scaling_event.from_workers,
                "to_workers": scaling_event.to_workers,
                "reason": scaling_event.reason,
            },
            cap=SCALING_EVENT_LIMIT,
        )


def _filtered(stmt, model, fuero: Optional[str], worker_type: Optional[str]):
    if fuero is not None:
        stmt = stmt.where(model.fuero == fuero)
    if worker_type is not None:
        stmt = stmt.where(model.worker_type == worker_type)
    return stmt


async def get_hourly_rows(
    session: AsyncSession,
    date: str,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[HourlyStat]:
    stmt = _filtered(select(HourlyStat).where(HourlyStat.date == date), HourlyStat, fuero, worker_type)
    result = await session.execute(stmt.order_by(HourlyStat.hour, HourlyStat.fuero))
    return list(result.scalars().all())


async def get_last_n_hours(
    session: AsyncSession,
    n: int = 24,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[HourlyStat]:
    """Rows of the last ``n`` hourly keys, oldest first. Hours without activity are absent."""
    keys = last_hour_keys(n, now)
    stmt = select(HourlyStat).where(
        or_(*(and_(HourlyStat.date == date, HourlyStat.hour == hour) for date, hour in keys))
    )
    stmt = _filtered(stmt, HourlyStat, fuero, worker_type)
    result = await session.execute(stmt)
    order = {key: index for index, key in enumerate(keys)}
    return sorted(result.scalars().all(), key=lambda row: (order[(row.date, row.hour)], row.fuero))


def hourly_distribution(rows: list[HourlyStat]) -> list[dict]:
    """Fold hourly rows into 24 slots, one per hour of the day.

    Counters add up across fueros; avg_workers keeps the busiest fuero's average.
    """
    slots = [
        {"hour": hour, "processed": 0, "successful": 0, "failed": 0, "movimientos_found": 0, "avg_workers": 0.0}
        for hour in range(24)
    ]
    for row in rows:
        slot = slots[row.hour]
        slot["processed"] += row.processed
        slot["successful"] += row.successful
        slot["failed"] += row.failed
        slot["movimientos_found"] += row.movimientos_found
        slot["avg_workers"] = max(slot["avg_workers"], row.avg_active_workers)
    return slots


async def get_day_by_hour(
    session: AsyncSession,
    date: str,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[dict]:
    return hourly_distribution(await get_hourly_rows(session, date, fuero, worker_type))


async def get_top_errors(
    session: AsyncSession,
    date: str,
    worker_type: Optional[str] = None,
    hour: Optional[int] = None,
    fuero: Optional[str] = None,
    limit: int = TOP_ERRORS_LIMIT,
) -> list[dict]:
    """Error types ranked by count for a day, or for one hour of it."""
    total = func.sum(HourlyErrorCount.count).label("total")
    example = func.max(HourlyErrorCount.last_message).label("example_message")
    stmt = select(HourlyErrorCount.error_type, total, example).where(HourlyErrorCount.date == date)
    if hour is not None:
        stmt = stmt.where(HourlyErrorCount.hour == hour)
    stmt = _filtered(stmt, HourlyErrorCount, fuero, worker_type)
    stmt = stmt.group_by(HourlyErrorCount.error_type).order_by(total.desc(), HourlyErrorCount.error_type)
    result = await session.execute(stmt.limit(limit))
    return [
        {"error_type": error_type, "count": int(count), "example_message": example_message}
        for error_type, count, example_message in result.all()
    ]


async def get_scaling_events(
    session: AsyncSession,
    date: str,
    hour: int,
    fuero: str,
    worker_type: str,
) -> list[ScalingEvent]:
    result = await session.execute(
        select(ScalingEvent)
        .where(
            ScalingEvent.date == date,
            ScalingEvent.hour == hour,
            ScalingEvent.fuero == fuero,
            ScalingEvent.worker_type == worker_type,
        )
        .order_by(ScalingEvent.id)
    )
    return list(result.scalars().all())
