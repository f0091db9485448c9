"""Persistence of the domain configuration documents.

The scaling config lives in the manager's state row, worker configs in
worker_configs keyed by worker id. Both are created with defaults on first
read (upsert do-nothing, then select) and only changed through typed patches.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.manager_state import ManagerState
from casefleet.models.worker_config import WorkerConfigRecord
from casefleet.schemas.config import (
    ScalingConfig,
    ScalingConfigPatch,
    WorkerConfig,
    WorkerConfigPatch,
    merge_patch,
)
from casefleet.services.periods import utcnow
from casefleet.services.store import upsert

log = structlog.get_logger(__name__)


async def ensure_manager_state(
    session: AsyncSession, name: str, now: Optional[datetime] = None
) -> ManagerState:
    """Get-or-create the manager row. Does not commit."""
    now = now or utcnow()
    await session.execute(
        upsert(session, ManagerState)
        .values(
            name=name,
            config=ScalingConfig().model_dump(mode="json"),
            workers={},
            pending={},
            optimal_workers={},
            reported_workers={},
            is_running=False,
            is_within_working_hours=False,
            cycle_count=0,
            created_at=now,
            last_update=now,
        )
        .on_conflict_do_nothing(index_elements=["name"])
    )
    result = await session.execute(
        select(ManagerState)
        .where(ManagerState.name == name)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def load_scaling_config(session: AsyncSession, name: str) -> ScalingConfig:
    state = await ensure_manager_state(session, name)
    await session.commit()
    return ScalingConfig.model_validate(state.config)


async def update_scaling_config(
    session: AsyncSession, name: str, patch: ScalingConfigPatch
) -> ScalingConfig:
    state = await ensure_manager_state(session, name)
    merged = merge_patch(ScalingConfig.model_validate(state.config), patch)
    await session.execute(
        update(ManagerState)
        .where(ManagerState.name == name)
        .values(config=merged.model_dump(mode="json"), last_update=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    log.info("scaling_config_updated", manager=name, fields=sorted(patch.model_fields_set))
    return merged


async def _ensure_worker_config(session: AsyncSession, worker_id: str) -> WorkerConfigRecord:
    await session.execute(
        upsert(session, WorkerConfigRecord)
        .values(
            worker_id=worker_id,
            config=WorkerConfig(worker_id=worker_id).model_dump(mode="json"),
            updated_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["worker_id"])
    )
    result = await session.execute(
        select(WorkerConfigRecord)
        .where(WorkerConfigRecord.worker_id == worker_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def load_worker_config(session: AsyncSession, worker_id: str) -> WorkerConfig:
    record = await _ensure_worker_config(session, worker_id)
    await session.commit()
    return WorkerConfig.model_validate(record.config)


async def update_worker_config(
    session: AsyncSession, worker_id: str, patch: WorkerConfigPatch
) -> WorkerConfig:
    record = await _ensure_worker_config(session, worker_id)
    merged = merge_patch(WorkerConfig.model_validate(record.config), patch)
    await session.execute(
        update(WorkerConfigRecord)
        .where(WorkerConfigRecord.worker_id == worker_id)
        .values(config=merged.model_dump(mode="json"), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    log.info("worker_config_updated", worker_id=worker_id, fields=sorted(patch.model_fields_set))
    return merged
