"""Daily statistics tier: counters, run lifecycle and the bounded error log.

Every public operation here is one unit of work and commits. Run totals are
folded into the day row by addition when the run finishes; per-item outcomes
are counted in the hourly tier, so the two never double count.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.errors import RunNotFoundError
from casefleet.models.alert import AlertScope
from casefleet.models.daily_stat import DailyStat, DayStatus, RunStatus, WorkerErrorLog, WorkerRun
from casefleet.models.work_item import as_utc
from casefleet.schemas.stats import DailyIncrements, ErrorReport, RunProgress, RunResult
from casefleet.services.alerts import evaluate_daily_rules, raise_alert
from casefleet.services.periods import business_date, utcnow
from casefleet.services.store import append_bounded, upsert

log = structlog.get_logger(__name__)

ERROR_LOG_LIMIT = 100

DAILY_KEY = ["date", "fuero", "worker_type"]


def daily_subject(date: str, fuero: str, worker_type: str) -> str:
    return f"{date}:{fuero}:{worker_type}"


async def _ensure_day(
    session: AsyncSession,
    date: str,
    fuero: str,
    worker_type: str,
    now: datetime,
    **on_conflict,
) -> uuid.UUID:
    """Get-or-create the day row and return its id."""
    values = {"status": DayStatus.pending.value, **on_conflict}
    stmt = upsert(session, DailyStat).values(
        date=date,
        fuero=fuero,
        worker_type=worker_type,
        created_at=now,
        last_update=now,
        **values,
    )
    if on_conflict:
        stmt = stmt.on_conflict_do_update(
            index_elements=DAILY_KEY,
            set_={**{name: stmt.excluded[name] for name in on_conflict}, "last_update": stmt.excluded.last_update},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=DAILY_KEY)
    await session.execute(stmt)

    result = await session.execute(
        select(DailyStat.id).where(
            DailyStat.date == date,
            DailyStat.fuero == fuero,
            DailyStat.worker_type == worker_type,
        )
    )
    return result.scalar_one()


async def increment_daily(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    increments: DailyIncrements,
    now: Optional[datetime] = None,
) -> None:
    now = now or utcnow()
    counters = {name: value for name, value in increments.model_dump().items() if value}
    table = DailyStat.__table__

    stmt = upsert(session, DailyStat).values(
        date=business_date(now),
        fuero=fuero,
        worker_type=worker_type,
        status=DayStatus.pending.value,
        created_at=now,
        last_update=now,
        **counters,
    )
    set_ = {name: table.c[name] + stmt.excluded[name] for name in counters}
    set_["last_update"] = stmt.excluded.last_update
    await session.execute(stmt.on_conflict_do_update(index_elements=DAILY_KEY, set_=set_))
    await session.commit()


async def start_run(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    total_to_process: int = 0,
    now: Optional[datetime] = None,
) -> uuid.UUID:
    """Open a run on today's row and mark the day in progress."""
    now = now or utcnow()
    extra = {"status": DayStatus.in_progress.value}
    if total_to_process > 0:
        extra["total_to_process"] = total_to_process

    daily_stat_id = await _ensure_day(session, business_date(now), fuero, worker_type, now, **extra)

    run = WorkerRun(daily_stat_id=daily_stat_id, started_at=now, status=RunStatus.running.value)
    session.add(run)
    await session.commit()

    log.info("run_started", run_id=str(run.id), fuero=fuero, worker_type=worker_type, total=total_to_process)
    return run.id


async def update_run(session: AsyncSession, run_id: uuid.UUID, progress: RunProgress) -> None:
    values = progress.model_dump(exclude_none=True)
    if not values:
        return
    result = await session.execute(
        update(WorkerRun)
        .where(WorkerRun.id == run_id, WorkerRun.status == RunStatus.running.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount != 1:
        raise RunNotFoundError(f"No running run {run_id}")


def day_status(
    current: str,
    processed: int,
    total_to_process: int,
    completed_runs: int,
    failed_runs: int,
) -> str:
    if failed_runs and not completed_runs:
        return DayStatus.failed.value
    if failed_runs:
        return DayStatus.partial.value
    if total_to_process > 0 and processed >= total_to_process:
        return DayStatus.completed.value
    return current


async def finish_run(
    session: AsyncSession,
    run_id: uuid.UUID,
    result: RunResult,
    now: Optional[datetime] = None,
) -> DailyStat:
    """Close a run, fold its counts into the day, and evaluate the daily alert rules.

    Only a run that is still running is closed and folded, so a retried call
    after a lost acknowledgement raises instead of counting twice.
    """
    now = now or utcnow()
    row = (
        await session.execute(
            select(WorkerRun.started_at, WorkerRun.daily_stat_id).where(WorkerRun.id == run_id)
        )
    ).one_or_none()
    if row is None:
        raise RunNotFoundError(f"Run {run_id} not found")
    started_at, daily_stat_id = row

    duration_ms = max(0, int((now - as_utc(started_at)).total_seconds() * 1000))
    final = result.model_dump(exclude_none=True, exclude={"status", "error_message"})
    closing = dict(final)
    if result.error_message:
        closing["error_message"] = result.error_message

    closed = await session.execute(
        update(WorkerRun)
        .where(WorkerRun.id == run_id, WorkerRun.status == RunStatus.running.value)
        .values(finished_at=now, duration_ms=duration_ms, status=result.status.value, **closing)
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount != 1:
        await session.rollback()
        raise RunNotFoundError(f"No running run {run_id}")

    await session.execute(
        update(DailyStat)
        .where(DailyStat.id == daily_stat_id)
        .values(
            processed=DailyStat.processed + final.get("documents_processed", 0),
            successful=DailyStat.successful + final.get("documents_successful", 0),
            failed=DailyStat.failed + final.get("documents_failed", 0),
            movimientos_found=DailyStat.movimientos_found + final.get("movimientos_found", 0),
            total_processing_time=DailyStat.total_processing_time + duration_ms,
            last_update=now,
        )
        .execution_options(synchronize_session=False)
    )

    run_counts = await session.execute(
        select(WorkerRun.status, func.count())
        .where(WorkerRun.daily_stat_id == daily_stat_id)
        .group_by(WorkerRun.status)
    )
    by_status = dict(run_counts.all())

    day = (
        await session.execute(
            select(DailyStat)
            .where(DailyStat.id == daily_stat_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    day.status = day_status(
        day.status,
        day.processed,
        day.total_to_process,
        by_status.get(RunStatus.completed.value, 0),
        by_status.get(RunStatus.failed.value, 0),
    )

    subject = daily_subject(day.date, day.fuero, day.worker_type)
    for draft in evaluate_daily_rules(day.processed, day.failed, day.captcha_attempts, day.captcha_failed):
        await raise_alert(
            session,
            AlertScope.daily,
            subject,
            draft,
            worker_type=day.worker_type,
            period_date=day.date,
            now=now,
        )

    await session.commit()
    log.info(
        "run_finished",
        run_id=str(run_id),
        status=result.status.value,
        duration_ms=duration_ms,
        day_status=day.status,
    )
    return day


async def log_error(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    error: ErrorReport,
    now: Optional[datetime] = None,
    count_failure: bool = True,
) -> None:
    """Append to the day's error log (newest 100 kept) and count one failure.

    Pass ``count_failure=False`` for failures of a run whose failed count is
    folded in by finish_run.
    """
    now = now or utcnow()
    daily_stat_id = await _ensure_day(session, business_date(now), fuero, worker_type, now)

    await append_bounded(
        session,
        WorkerErrorLog,
        scope={"daily_stat_id": daily_stat_id},
        values={
            "recorded_at": now,
            "work_item_id": error.work_item_id,
            "number": error.number,
            "year": error.year,
            "error_type": error.error_type.value,
            "message": error.message,
            "stack": error.stack,
            "retry_count": error.retry_count,
        },
        cap=ERROR_LOG_LIMIT,
    )
    if count_failure:
        await session.execute(
            update(DailyStat)
            .where(DailyStat.id == daily_stat_id)
            .values(failed=DailyStat.failed + 1, last_update=now)
            .execution_options(synchronize_session=False)
        )
    await session.commit()


async def get_day(
    session: AsyncSession, date: str, worker_type: Optional[str] = None
) -> list[DailyStat]:
    stmt = select(DailyStat).where(DailyStat.date == date)
    if worker_type is not None:
        stmt = stmt.where(DailyStat.worker_type == worker_type)
    result = await session.execute(stmt.order_by(DailyStat.fuero))
    return list(result.scalars().all())


async def get_by_date_range(
    session: AsyncSession,
    start_date: str,
    end_date: str,
    fuero: Optional[str] = None,
    worker_type: Optional[str] = None,
) -> list[DailyStat]:
    stmt = select(DailyStat).where(DailyStat.date >= start_date, DailyStat.date <= end_date)
    if fuero is not None:
        stmt = stmt.where(DailyStat.fuero == fuero)
    if worker_type is not None:
        stmt = stmt.where(DailyStat.worker_type == worker_type)
    result = await session.execute(stmt.order_by(DailyStat.date.desc(), DailyStat.fuero))
    return list(result.scalars().all())


async def get_runs(session: AsyncSession, daily_stat_id: uuid.UUID) -> list[WorkerRun]:
    result = await session.execute(
        select(WorkerRun)
        .where(WorkerRun.daily_stat_id == daily_stat_id)
        .order_by(WorkerRun.started_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_errors(session: AsyncSession, daily_stat_id: uuid.UUID) -> list[WorkerErrorLog]:
    result = await session.execute(
        select(WorkerErrorLog)
        .where(WorkerErrorLog.daily_stat_id == daily_stat_id)
        .order_by(WorkerErrorLog.id)
    )
    return list(result.scalars().all())
