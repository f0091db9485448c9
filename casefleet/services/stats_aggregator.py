"""Best-effort statistics facade used by the workers.

Each call is its own unit of work on a fresh session. Statistics are
telemetry, not a system of record: store errors are logged and counted,
never raised, so they cannot undo the work outcome they describe.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casefleet.errors import StoreUnavailableError
from casefleet.metrics import stats_write_failures
from casefleet.models.daily_stat import DailyStat
from casefleet.models.daily_summary import DailySummary
from casefleet.models.hourly_stat import WorkerType
from casefleet.schemas.stats import (
    DailyIncrements,
    ErrorReport,
    HourlyIncrements,
    RunProgress,
    RunResult,
    WorkOutcome,
)
from casefleet.services import daily_stats, hourly_stats, summary
from casefleet.services.periods import business_date, utcnow
from casefleet.services.store import unit_of_work

log = structlog.get_logger(__name__)


async def _record_outcome(
    session: AsyncSession,
    fuero: str,
    worker_type: str,
    outcome: WorkOutcome,
    now: datetime,
) -> None:
    failed = not outcome.success and not outcome.skipped
    await hourly_stats.increment_hourly(
        session,
        fuero,
        worker_type,
        HourlyIncrements(
            processed=0 if outcome.skipped else 1,
            successful=int(outcome.success),
            failed=int(failed),
            skipped=int(outcome.skipped),
            movimientos_found=outcome.movimientos_found,
            processing_time_ms=outcome.processing_time_ms,
        ),
        now,
    )
    if failed:
        error = outcome.error or ErrorReport()
        await hourly_stats.record_error_type(
            session, fuero, worker_type, error.error_type, error.message, now
        )

    increments = DailyIncrements(
        captcha_attempts=outcome.captcha_attempts,
        captcha_failed=outcome.captcha_failed,
        captcha_successful=max(0, outcome.captcha_attempts - outcome.captcha_failed),
        private_causas=int(outcome.is_private is True),
        public_causas=int(outcome.is_private is False),
    )
    if any(increments.model_dump().values()):
        await daily_stats.increment_daily(session, fuero, worker_type, increments, now)
    await session.commit()


class StatsAggregator:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _best_effort(self, operation: str, func, *args, **kwargs):
        try:
            async with unit_of_work(self._session_factory) as session:
                return await func(session, *args, **kwargs)
        except (SQLAlchemyError, StoreUnavailableError) as exc:
            stats_write_failures.labels(operation=operation).inc()
            log.warning("stats_write_failed", operation=operation, error=str(exc))
            return None
        except Exception:
            # Never stops the worker, but is logged loudly since a retry will not help
            stats_write_failures.labels(operation=operation).inc()
            log.error("stats_write_failed", operation=operation, exc_info=True)
            return None

    async def record_outcome(
        self,
        fuero: str,
        worker_type: str,
        outcome: WorkOutcome,
        now: Optional[datetime] = None,
    ) -> None:
        await self._best_effort("record_outcome", _record_outcome, fuero, worker_type, outcome, now or utcnow())

    async def start_run(
        self, fuero: str, worker_type: str, total_to_process: int = 0
    ) -> Optional[uuid.UUID]:
        return await self._best_effort("start_run", daily_stats.start_run, fuero, worker_type, total_to_process)

    async def update_run(self, run_id: uuid.UUID, progress: RunProgress) -> None:
        await self._best_effort("update_run", daily_stats.update_run, run_id, progress)

    async def finish_run(self, run_id: uuid.UUID, result: RunResult) -> Optional[DailyStat]:
        return await self._best_effort("finish_run", daily_stats.finish_run, run_id, result)

    async def log_error(
        self,
        fuero: str,
        worker_type: str,
        error: ErrorReport,
        count_failure: bool = True,
    ) -> None:
        await self._best_effort(
            "log_error",
            daily_stats.log_error,
            fuero,
            worker_type,
            error,
            count_failure=count_failure,
        )

    async def regenerate_summary(
        self,
        date: Optional[str] = None,
        worker_type: str = WorkerType.app_update.value,
    ) -> Optional[DailySummary]:
        return await self._best_effort(
            "regenerate_summary", summary.generate_summary, date or business_date(), worker_type
        )
