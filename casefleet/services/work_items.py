"""Work item update history."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.work_item import UpdateType, WorkItem, WorkItemUpdate
from casefleet.services.periods import utcnow


async def record_update(
    session: AsyncSession,
    item_id: uuid.UUID,
    *,
    worker_type: str,
    success: bool,
    source: str = "app",
    update_type: UpdateType = UpdateType.update,
    movimientos_added: int = 0,
    movimientos_total: Optional[int] = None,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> None:
    """Append one history entry; on success also refresh the item's last_update."""
    now = now or utcnow()
    session.add(
        WorkItemUpdate(
            work_item_id=item_id,
            recorded_at=now,
            source=source,
            worker_type=worker_type,
            update_type=(UpdateType.error if not success else update_type).value,
            success=success,
            movimientos_added=movimientos_added,
            movimientos_total=movimientos_total,
            details=details,
        )
    )
    if success:
        values = {"last_update": now, "updated_at": now}
        if movimientos_total is not None:
            values["movimientos_count"] = movimientos_total
        else:
            values["movimientos_count"] = WorkItem.movimientos_count + movimientos_added
        await session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    await session.commit()
