"""Tests for the daily statistics tier and the run lifecycle."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from casefleet.errors import RunNotFoundError
from casefleet.models.alert import AlertScope
from casefleet.models.daily_stat import DailyStat, RunStatus, WorkerRun
from casefleet.models.hourly_stat import ErrorType
from casefleet.schemas.stats import DailyIncrements, ErrorReport, RunProgress, RunResult
from casefleet.services import daily_stats
from casefleet.services.alerts import list_active_alerts

from .conftest import NOW

DATE = "2026-03-10"
WORKER_TYPE = "app-update"
SUBJECT = f"{DATE}:CIV:{WORKER_TYPE}"


async def _finish(session, processed, failed, total=0, status=RunStatus.completed, started=NOW):
    run_id = await daily_stats.start_run(session, "CIV", WORKER_TYPE, total_to_process=total, now=started)
    return await daily_stats.finish_run(
        session,
        run_id,
        RunResult(
            status=status,
            documents_processed=processed,
            documents_successful=processed - failed,
            documents_failed=failed,
        ),
        now=started + timedelta(seconds=90),
    )


async def test_run_lifecycle_folds_counts_into_day(session):
    run_id = await daily_stats.start_run(session, "CIV", WORKER_TYPE, total_to_process=10, now=NOW)
    [day] = await daily_stats.get_day(session, DATE)
    assert day.status == "in_progress"
    assert day.total_to_process == 10

    await daily_stats.update_run(session, run_id, RunProgress(documents_processed=4))
    day = await daily_stats.finish_run(
        session,
        run_id,
        RunResult(documents_processed=10, documents_successful=9, documents_failed=1, movimientos_found=7),
        now=NOW + timedelta(minutes=2),
    )

    assert day.processed == 10
    assert day.successful == 9
    assert day.failed == 1
    assert day.movimientos_found == 7
    assert day.total_processing_time == 120_000
    assert day.status == "completed"

    [run] = await daily_stats.get_runs(session, day.id)
    assert run.status == "completed"
    assert run.duration_ms == 120_000
    assert run.documents_processed == 10


async def test_high_error_rate_raises_alert(session):
    await _finish(session, processed=120, failed=15)

    alerts = await list_active_alerts(session, AlertScope.daily, SUBJECT)
    assert [a.type for a in alerts] == ["high_error_rate"]
    assert alerts[0].period_date == DATE
    assert alerts[0].worker_type == WORKER_TYPE


async def test_low_error_rate_raises_nothing(session):
    await _finish(session, processed=120, failed=8)

    assert await list_active_alerts(session, AlertScope.daily) == []


async def test_alert_is_deduplicated_across_runs(session):
    await _finish(session, processed=60, failed=10)
    await _finish(session, processed=60, failed=10, started=NOW + timedelta(minutes=5))

    assert len(await list_active_alerts(session, AlertScope.daily, SUBJECT)) == 1


async def test_captcha_alert(session):
    await daily_stats.increment_daily(
        session, "CIV", WORKER_TYPE, DailyIncrements(captcha_attempts=10, captcha_failed=3, captcha_successful=7), NOW
    )
    await _finish(session, processed=3, failed=0)

    alerts = await list_active_alerts(session, AlertScope.daily, SUBJECT)
    assert [a.type for a in alerts] == ["captcha_issues"]


async def test_failed_then_completed_run_is_partial(session):
    day = await _finish(session, processed=0, failed=0, status=RunStatus.failed)
    assert day.status == "failed"

    day = await _finish(session, processed=5, failed=0, started=NOW + timedelta(minutes=5))
    assert day.status == "partial"


async def test_concurrent_first_start_run_creates_one_day(session_factory):
    async def start():
        async with session_factory() as db:
            return await daily_stats.start_run(db, "CIV", WORKER_TYPE, now=NOW)

    run_ids = await asyncio.gather(*(start() for _ in range(5)))

    assert len(set(run_ids)) == 5
    async with session_factory() as db:
        days = (await db.execute(select(func.count(DailyStat.id)))).scalar_one()
        runs = (await db.execute(select(func.count(WorkerRun.id)))).scalar_one()
    assert days == 1
    assert runs == 5


async def test_unknown_run(session):
    with pytest.raises(RunNotFoundError):
        await daily_stats.update_run(session, uuid.uuid4(), RunProgress(documents_processed=1))
    with pytest.raises(RunNotFoundError):
        await daily_stats.finish_run(session, uuid.uuid4(), RunResult(), now=NOW)


async def test_finished_run_no_longer_accepts_progress(session):
    run_id = await daily_stats.start_run(session, "CIV", WORKER_TYPE, now=NOW)
    await daily_stats.finish_run(session, run_id, RunResult(), now=NOW)

    with pytest.raises(RunNotFoundError):
        await daily_stats.update_run(session, run_id, RunProgress(documents_processed=1))


async def test_finish_run_twice_folds_once(session):
    run_id = await daily_stats.start_run(session, "CIV", WORKER_TYPE, now=NOW)
    result = RunResult(documents_processed=10, documents_successful=10)
    await daily_stats.finish_run(session, run_id, result, now=NOW + timedelta(minutes=1))

    with pytest.raises(RunNotFoundError):
        await daily_stats.finish_run(session, run_id, result, now=NOW + timedelta(minutes=2))

    [day] = await daily_stats.get_day(session, DATE)
    assert day.processed == 10
    assert day.successful == 10
    assert day.total_processing_time == 60_000
    [run] = await daily_stats.get_runs(session, day.id)
    assert run.duration_ms == 60_000


async def test_increments_accumulate(session):
    for _ in range(3):
        await daily_stats.increment_daily(
            session, "CIV", WORKER_TYPE, DailyIncrements(private_causas=1, public_causas=2), NOW
        )

    [day] = await daily_stats.get_day(session, DATE, WORKER_TYPE)
    assert day.private_causas == 3
    assert day.public_causas == 6
    assert day.status == "pending"


async def test_error_log_keeps_newest_hundred(session):
    for i in range(105):
        await daily_stats.log_error(
            session,
            "CIV",
            WORKER_TYPE,
            ErrorReport(error_type=ErrorType.timeout, message=f"error {i}", number=i, year=2024),
            now=NOW,
        )

    [day] = await daily_stats.get_day(session, DATE)
    errors = await daily_stats.get_errors(session, day.id)
    assert len(errors) == 100
    assert errors[0].message == "error 5"
    assert errors[-1].message == "error 104"
    assert day.failed == 105


async def test_log_error_without_counting(session):
    await daily_stats.log_error(session, "CIV", WORKER_TYPE, ErrorReport(message="boom"), now=NOW, count_failure=False)

    [day] = await daily_stats.get_day(session, DATE)
    assert day.failed == 0
    assert len(await daily_stats.get_errors(session, day.id)) == 1


async def test_date_range_is_newest_first(session):
    for days_ago in (0, 1, 5):
        await daily_stats.increment_daily(
            session, "CIV", WORKER_TYPE, DailyIncrements(processed=1), NOW - timedelta(days=days_ago)
        )

    rows = await daily_stats.get_by_date_range(session, "2026-03-08", DATE)
    assert [r.date for r in rows] == [DATE, "2026-03-09"]
