"""Summary worker: periodically regenerates today's daily summaries.

Runs inside the API process (started by the lifespan). Regeneration is
idempotent, so overlapping instances only repeat work. Each cycle also
checks that the autoscaling manager is still cycling.
"""

import asyncio
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from casefleet.config import settings
from casefleet.database import async_session_factory
from casefleet.models.daily_stat import DailyStat
from casefleet.services.autoscaling import AutoscalingManager
from casefleet.services.periods import business_date, previous_date, utcnow
from casefleet.services.stats_aggregator import StatsAggregator

log = structlog.get_logger(__name__)

# Let the app warm up before the first cycle
INITIAL_DELAY_SECONDS = 30


async def run_summary_cycle(
    session_factory: async_sessionmaker = async_session_factory,
    now: Optional[datetime] = None,
) -> int:
    """Regenerate today's and yesterday's summaries of every active worker type.

    Returns:
        Number of summaries written.
    """
    now = now or utcnow()
    today = business_date(now)
    dates = [today, previous_date(today)]

    async with session_factory() as db:
        result = await db.execute(
            select(DailyStat.date, DailyStat.worker_type).where(DailyStat.date.in_(dates)).distinct()
        )
        keys = sorted(result.all())

    stats = StatsAggregator(session_factory)
    written = 0
    for date, worker_type in keys:
        if await stats.regenerate_summary(date, worker_type) is not None:
            written += 1

    async with session_factory() as db:
        await AutoscalingManager(db).check_liveness(now)

    log.info("summary_cycle_completed", summaries=written, dates=dates)
    return written


async def summary_worker_loop():
    """Background loop that regenerates summaries every summary_interval_seconds."""
    log.info("summary_worker_started", interval_seconds=settings.summary_interval_seconds)
    await asyncio.sleep(INITIAL_DELAY_SECONDS)

    while True:
        try:
            await run_summary_cycle()
        except Exception:
            log.error("summary_worker_error", exc_info=True)
        await asyncio.sleep(settings.summary_interval_seconds)
