"""Tests for the hourly statistics tier."""

import asyncio
from datetime import timedelta

from casefleet.models.hourly_stat import ErrorType, HourlyStat, ScalingAction
from casefleet.schemas.stats import HourlyIncrements, ScalingEventIn
from casefleet.services.hourly_stats import (
    get_hourly_rows,
    get_last_n_hours,
    get_scaling_events,
    get_top_errors,
    hourly_distribution,
    increment_hourly,
    record_error_type,
    record_manager_cycle,
)

from .conftest import NOW

DATE = "2026-03-10"
HOUR = 12  # NOW in Buenos Aires
WORKER_TYPE = "app-update"


async def test_concurrent_increments_are_not_lost(session_factory):
    async def report(elapsed_ms: int):
        async with session_factory() as db:
            await increment_hourly(
                db,
                "CIV",
                WORKER_TYPE,
                HourlyIncrements(processed=1, successful=1, movimientos_found=2, processing_time_ms=elapsed_ms),
                now=NOW,
            )
            await db.commit()

    await asyncio.gather(*(report(100 + i) for i in range(20)))

    async with session_factory() as db:
        rows = await get_hourly_rows(db, DATE)
    assert len(rows) == 1
    row = rows[0]
    assert (row.hour, row.fuero) == (HOUR, "CIV")
    assert row.processed == 20
    assert row.successful == 20
    assert row.movimientos_found == 40
    assert row.min_processing_time == 100
    assert row.max_processing_time == 119
    assert row.total_processing_time == sum(range(100, 120))
    assert row.avg_processing_time == 109.5


async def test_report_without_timing_keeps_min_max(session):
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=1, processing_time_ms=300), NOW)
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(skipped=1), NOW)
    await session.commit()

    [row] = await get_hourly_rows(session, DATE)
    assert row.processed == 1
    assert row.skipped == 1
    assert row.min_processing_time == 300
    assert row.max_processing_time == 300


async def test_keys_are_separate_per_fuero_and_hour(session):
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=1), NOW)
    await increment_hourly(session, "CNT", WORKER_TYPE, HourlyIncrements(processed=2), NOW)
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=4), NOW - timedelta(hours=2))
    await session.commit()

    rows = await get_hourly_rows(session, DATE)
    assert [(r.hour, r.fuero, r.processed) for r in rows] == [
        (10, "CIV", 4),
        (12, "CIV", 1),
        (12, "CNT", 2),
    ]
    assert [r.processed for r in await get_hourly_rows(session, DATE, fuero="CIV")] == [4, 1]


async def test_last_n_hours_is_chronological(session):
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=1), NOW)
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=2), NOW - timedelta(hours=2))
    await increment_hourly(session, "CIV", WORKER_TYPE, HourlyIncrements(processed=3), NOW - timedelta(hours=5))
    await session.commit()

    rows = await get_last_n_hours(session, 3, now=NOW)
    assert [(r.hour, r.processed) for r in rows] == [(10, 2), (12, 1)]
    assert [r.hour for r in await get_last_n_hours(session, 1, now=NOW)] == [12]


async def test_manager_cycles_feed_worker_gauges(session):
    for active, pending in [(2, 900), (4, 800), (3, 700)]:
        await record_manager_cycle(session, "CIV", WORKER_TYPE, active_workers=active, pending=pending, now=NOW)
    await session.commit()

    [row] = await get_hourly_rows(session, DATE)
    assert row.manager_cycles == 3
    assert row.max_active_workers == 4
    assert row.avg_active_workers == 3.0
    assert row.pending_at_start == 900
    assert row.pending_at_end == 700


async def test_only_actual_scaling_events_are_logged(session):
    await record_manager_cycle(
        session, "CIV", WORKER_TYPE, 1, 800,
        scaling_event=ScalingEventIn(action=ScalingAction.scale_up, from_workers=1, to_workers=2, reason="backlog"),
        now=NOW,
    )
    await record_manager_cycle(
        session, "CIV", WORKER_TYPE, 2, 600,
        scaling_event=ScalingEventIn(action=ScalingAction.no_change, from_workers=2, to_workers=2),
        now=NOW,
    )
    await session.commit()

    events = await get_scaling_events(session, DATE, HOUR, "CIV", WORKER_TYPE)
    assert [(e.action, e.from_workers, e.to_workers) for e in events] == [("scale_up", 1, 2)]


async def test_top_errors(session):
    for _ in range(3):
        await record_error_type(session, "CIV", WORKER_TYPE, ErrorType.timeout, "took too long", NOW)
    await record_error_type(session, "CNT", WORKER_TYPE, ErrorType.timeout, None, NOW)
    await record_error_type(session, "CIV", WORKER_TYPE, ErrorType.captcha_failed, "bad captcha", NOW)
    await session.commit()

    errors = await get_top_errors(session, DATE, WORKER_TYPE)
    assert errors == [
        {"error_type": "timeout", "count": 4, "example_message": "took too long"},
        {"error_type": "captcha_failed", "count": 1, "example_message": "bad captcha"},
    ]
    assert await get_top_errors(session, DATE, WORKER_TYPE, hour=HOUR - 1) == []
    assert [e["count"] for e in await get_top_errors(session, DATE, fuero="CNT")] == [1]


def test_hourly_distribution_folds_fueros():
    rows = [
        HourlyStat(hour=9, fuero="CIV", processed=5, successful=4, failed=1, movimientos_found=3,
                   manager_cycles=2, active_workers_total=4),
        HourlyStat(hour=9, fuero="CNT", processed=2, successful=2, failed=0, movimientos_found=1,
                   manager_cycles=2, active_workers_total=2),
        HourlyStat(hour=14, fuero="CIV", processed=1, successful=0, failed=1, movimientos_found=0,
                   manager_cycles=0, active_workers_total=0),
    ]

    slots = hourly_distribution(rows)

    assert len(slots) == 24
    assert slots[9] == {
        "hour": 9, "processed": 7, "successful": 6, "failed": 1, "movimientos_found": 4, "avg_workers": 2.0,
    }
    assert slots[14]["failed"] == 1
    assert slots[0]["processed"] == 0
