"""Candidate selection for update workers.

Selection never claims: the caller attempts LeaseLockManager.acquire on
each candidate in order and skips the ones it loses. Pages are ordered by
oldest last_update first so rarely touched items are not starved.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.work_item import WorkItem
from casefleet.schemas.config import EligibilityCriteria
from casefleet.services.periods import utcnow


class EligibilitySelector:
    def __init__(self, session: AsyncSession, criteria: Optional[EligibilityCriteria] = None):
        self._session = session
        self._criteria = criteria or EligibilityCriteria()

    def conditions(self, now: datetime, fuero: Optional[str] = None) -> list:
        stale_before = now - self._criteria.update_threshold
        conditions = [
            WorkItem.source.in_(self._criteria.allowed_sources),
            WorkItem.verified.is_(True),
            WorkItem.is_valid.is_(True),
            WorkItem.needs_update.is_(True),
            or_(WorkItem.last_update.is_(None), WorkItem.last_update < stale_before),
            # No live lease
            or_(
                WorkItem.lease_worker_id.is_(None),
                WorkItem.lease_expires_at.is_(None),
                WorkItem.lease_expires_at <= now,
            ),
            # Not cooling down
            or_(WorkItem.skip_until.is_(None), WorkItem.skip_until <= now),
        ]
        if fuero is not None:
            conditions.append(WorkItem.fuero == fuero)
        return conditions

    async def next_page(
        self,
        fuero: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[WorkItem]:
        now = now or utcnow()
        stmt = (
            select(WorkItem)
            .where(and_(*self.conditions(now, fuero)))
            .order_by(WorkItem.last_update.asc().nulls_first(), WorkItem.id)
            .limit(limit or self._criteria.batch_size)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, fuero: Optional[str] = None, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = await self._session.execute(
            select(func.count(WorkItem.id)).where(and_(*self.conditions(now, fuero)))
        )
        return result.scalar_one()

    async def count_by_fuero(
        self, fueros: Iterable[str], now: Optional[datetime] = None
    ) -> dict[str, int]:
        """Backlog per fuero, zero-filled for fueros without candidates."""
        now = now or utcnow()
        fueros = list(fueros)
        result = await self._session.execute(
            select(WorkItem.fuero, func.count(WorkItem.id))
            .where(and_(*self.conditions(now)), WorkItem.fuero.in_(fueros))
            .group_by(WorkItem.fuero)
        )
        counts = dict.fromkeys(fueros, 0)
        counts.update({fuero: count for fuero, count in result.all()})
        return counts
