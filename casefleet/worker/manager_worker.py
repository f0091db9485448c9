"""Manager worker: runs the autoscaling cycle every check interval.

Exactly one instance must run at a time; the process supervisor provides
that exclusivity. Worker counts are the ones last reported by the
supervisor, resources are sampled locally with psutil.
"""
import asyncio

import psutil
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casefleet.config import settings
from casefleet.database import async_session_factory
from casefleet.logging_config import configure_logging
from casefleet.schemas.config import ScalingConfig
from casefleet.schemas.manager import CycleInputs, ResourceReadings
from casefleet.services.autoscaling import AutoscalingManager

log = structlog.get_logger(__name__)

MB = 1024 * 1024


def sample_resources() -> ResourceReadings:
    vm = psutil.virtual_memory()
    return ResourceReadings(
        cpu_usage=psutil.cpu_percent(interval=None) / 100,
        memory_usage=vm.percent / 100,
        free_memory_mb=int(vm.available / MB),
        total_memory_mb=int(vm.total / MB),
    )


async def read_inputs(db: AsyncSession) -> CycleInputs:
    state = await AutoscalingManager(db).get_state()
    return CycleInputs(workers=dict(state.reported_workers or {}), resources=sample_resources())


async def run_worker(session_factory: async_sessionmaker = async_session_factory) -> None:
    """Main loop: one manager cycle per check_interval_seconds of the stored config."""
    configure_logging()
    # First cpu_percent() call only primes the counters
    psutil.cpu_percent(interval=None)
    log.info("manager_worker_started", manager=settings.manager_name)

    try:
        while True:
            interval = ScalingConfig().check_interval_seconds
            try:
                async with session_factory() as db:
                    manager = AutoscalingManager(db)
                    result = await manager.run_cycle(await read_inputs(db))
                    interval = (await manager.get_state()).config.get("check_interval_seconds", interval)
                    log.debug("manager_cycle_done", cycle=result.cycle_count)
            except Exception as exc:
                log.error("manager_loop_error", error=str(exc))

            await asyncio.sleep(interval)
    finally:
        async with session_factory() as db:
            await AutoscalingManager(db).mark_stopped(reason="Manager worker exited")


if __name__ == "__main__":
    asyncio.run(run_worker())
