"""Update worker: refreshes eligible work items through an external handler.

Candidates come from the EligibilitySelector; each one is claimed with a
lease before the handler runs and released afterwards. Contended items are
skipped without re-querying. Outcomes feed the error cooldown, the item's
update history and the best-effort statistics. Several instances run in
parallel and coordinate only through the database.
"""
import asyncio
import contextlib
import importlib
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from casefleet.config import settings
from casefleet.database import async_session_factory
from casefleet.errors import ConfigError, TransientWorkerError
from casefleet.logging_config import configure_logging
from casefleet.metrics import worker_outcomes
from casefleet.models.daily_stat import RunStatus
from casefleet.models.hourly_stat import ErrorType
from casefleet.models.work_item import WorkItem
from casefleet.schemas.config import WorkerConfig
from casefleet.schemas.stats import ErrorReport, RunResult, WorkOutcome
from casefleet.services.config_store import load_worker_config
from casefleet.services.cooldown import ErrorCooldownController
from casefleet.services.eligibility import EligibilitySelector
from casefleet.services.lease import LeaseLockManager
from casefleet.services.stats_aggregator import StatsAggregator
from casefleet.services.work_items import record_update

log = structlog.get_logger(__name__)


@dataclass
class UpdateOutcome:
    """What the handler found for one work item."""

    movimientos_added: int = 0
    movimientos_total: Optional[int] = None
    skipped: bool = False
    is_private: Optional[bool] = None
    captcha_attempts: int = 0
    captcha_failed: int = 0
    details: Optional[dict] = None


UpdateHandler = Callable[[WorkItem], Awaitable[UpdateOutcome]]


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    contended: int = 0
    movimientos_found: int = 0
    item_ids: list[uuid.UUID] = field(default_factory=list)


def _error_type(value: str) -> ErrorType:
    try:
        return ErrorType(value)
    except ValueError:
        return ErrorType.unknown


async def _keep_lease_alive(
    session_factory: async_sessionmaker,
    item_id: uuid.UUID,
    worker_id: str,
    ttl: timedelta,
) -> None:
    """Renew the lease every third of its TTL until cancelled or lost."""
    while True:
        await asyncio.sleep(ttl.total_seconds() / 3)
        try:
            async with session_factory() as db:
                if not await LeaseLockManager(db, ttl).renew(item_id, worker_id):
                    return
        except SQLAlchemyError as exc:
            log.warning("lease_renew_failed", item_id=str(item_id), error=str(exc))


async def _process_item(
    session_factory: async_sessionmaker,
    item: WorkItem,
    config: WorkerConfig,
    handler: UpdateHandler,
    stats: StatsAggregator,
    result: BatchResult,
) -> None:
    worker_type = config.worker_type.value
    started = time.monotonic()
    keepalive = asyncio.create_task(
        _keep_lease_alive(session_factory, item.id, config.worker_id, config.lease_ttl)
    )
    outcome = None
    error = None
    try:
        outcome = await handler(item)
    except TransientWorkerError as exc:
        error = ErrorReport(
            error_type=_error_type(exc.error_type),
            message=exc.message,
            work_item_id=item.id,
            number=item.number,
            year=item.year,
        )
    except Exception as exc:
        error = ErrorReport(
            error_type=ErrorType.unknown,
            message=str(exc),
            stack=traceback.format_exc(),
            work_item_id=item.id,
            number=item.number,
            year=item.year,
        )
    finally:
        keepalive.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await keepalive
    elapsed_ms = int((time.monotonic() - started) * 1000)

    if outcome is not None and outcome.skipped:
        result.skipped += 1
        worker_outcomes.labels(fuero=item.fuero, result="skipped").inc()
        await stats.record_outcome(
            item.fuero,
            worker_type,
            WorkOutcome(success=False, skipped=True, processing_time_ms=elapsed_ms, is_private=outcome.is_private),
        )
        return

    result.processed += 1
    async with session_factory() as db:
        cooldown = ErrorCooldownController(db, config.error_cooldown)
        if error is None:
            await cooldown.on_success(item.id)
            await record_update(
                db,
                item.id,
                worker_type=worker_type,
                success=True,
                source=item.source,
                movimientos_added=outcome.movimientos_added,
                movimientos_total=outcome.movimientos_total,
                details=outcome.details,
            )
        else:
            await cooldown.on_failure(item.id, error.error_type.value)
            await record_update(
                db,
                item.id,
                worker_type=worker_type,
                success=False,
                source=item.source,
                details={"error_type": error.error_type.value, "message": error.message},
            )

    if error is None:
        result.successful += 1
        result.movimientos_found += outcome.movimientos_added
        worker_outcomes.labels(fuero=item.fuero, result="success").inc()
        log.info(
            "work_item_updated",
            item_id=str(item.id),
            fuero=item.fuero,
            movimientos_added=outcome.movimientos_added,
            elapsed_ms=elapsed_ms,
        )
        await stats.record_outcome(
            item.fuero,
            worker_type,
            WorkOutcome(
                success=True,
                movimientos_found=outcome.movimientos_added,
                processing_time_ms=elapsed_ms,
                captcha_attempts=outcome.captcha_attempts,
                captcha_failed=outcome.captcha_failed,
                is_private=outcome.is_private,
            ),
        )
        return

    result.failed += 1
    worker_outcomes.labels(fuero=item.fuero, result="failure").inc()
    log.warning(
        "work_item_update_failed",
        item_id=str(item.id),
        fuero=item.fuero,
        error_type=error.error_type.value,
        error=error.message,
    )
    await stats.record_outcome(
        item.fuero,
        worker_type,
        WorkOutcome(success=False, processing_time_ms=elapsed_ms, error=error),
    )
    # The run's failed count is folded in by finish_run
    await stats.log_error(item.fuero, worker_type, error, count_failure=False)


async def process_batch(
    session_factory: async_sessionmaker,
    config: WorkerConfig,
    handler: UpdateHandler,
    stats: StatsAggregator,
) -> BatchResult:
    """Select one page of candidates and process every one this worker manages to lease.

    Returns:
        Counts of the batch, including candidates lost to other workers.
    """
    async with session_factory() as db:
        candidates = await EligibilitySelector(db, config.eligibility()).next_page(fuero=config.fuero)

    result = BatchResult()
    for item in candidates:
        async with session_factory() as db:
            lease = await LeaseLockManager(db, config.lease_ttl).acquire(item.id, config.worker_id)
        if not lease.acquired:
            result.contended += 1
            continue

        result.item_ids.append(item.id)
        try:
            await _process_item(session_factory, item, config, handler, stats, result)
        finally:
            async with session_factory() as db:
                await LeaseLockManager(db).release(item.id, config.worker_id)
    return result


def load_handler(path: str) -> UpdateHandler:
    """Resolve a ``module:function`` path to an UpdateHandler."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"update handler must be 'module:function', got {path!r}")
    return getattr(importlib.import_module(module_name), attr)


async def run_worker(
    handler: UpdateHandler,
    worker_id: Optional[str] = None,
    session_factory: async_sessionmaker = async_session_factory,
) -> None:
    """Main polling loop: one statistics run per non-empty batch."""
    configure_logging()
    worker_id = worker_id or settings.worker_id
    stats = StatsAggregator(session_factory)

    async with session_factory() as db:
        config = await load_worker_config(db, worker_id)
    if config.fuero is None:
        raise ConfigError(f"worker {worker_id} has no fuero configured")
    worker_type = config.worker_type.value

    log.info(
        "update_worker_started",
        worker_id=worker_id,
        fuero=config.fuero,
        batch_size=config.batch_size,
        poll_interval=settings.worker_poll_interval_seconds,
    )

    try:
        while True:
            try:
                async with session_factory() as db:
                    # Picks up config patches between batches
                    config = await load_worker_config(db, worker_id)
                    pending = await EligibilitySelector(db, config.eligibility()).count(config.fuero)

                if pending:
                    run_id = await stats.start_run(config.fuero, worker_type, total_to_process=pending)
                    try:
                        batch = await process_batch(session_factory, config, handler, stats)
                    except Exception as exc:
                        if run_id is not None:
                            await stats.finish_run(
                                run_id, RunResult(status=RunStatus.failed, error_message=str(exc))
                            )
                        raise
                    if run_id is not None:
                        await stats.finish_run(
                            run_id,
                            RunResult(
                                documents_processed=batch.processed,
                                documents_successful=batch.successful,
                                documents_failed=batch.failed,
                                movimientos_found=batch.movimientos_found,
                            ),
                        )
                    log.info(
                        "batch_processed",
                        processed=batch.processed,
                        failed=batch.failed,
                        contended=batch.contended,
                    )
            except Exception as exc:
                log.error("worker_loop_error", error=str(exc))

            await asyncio.sleep(settings.worker_poll_interval_seconds)
    finally:
        async with session_factory() as db:
            await LeaseLockManager(db).release_all(worker_id)


if __name__ == "__main__":
    asyncio.run(run_worker(load_handler(settings.update_handler)))
