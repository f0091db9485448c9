"""Lease locks on work items.

Every mutation is a single conditional UPDATE, so the test and the set
happen in one statement and two concurrent acquirers can never both
succeed. A lease whose expires_at is in the past is treated as absent and
can be taken by any worker. Contention is a normal result, not an error:
callers move on to the next candidate.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.metrics import lease_attempts
from casefleet.models.work_item import Lease, WorkItem
from casefleet.services.periods import utcnow

log = structlog.get_logger(__name__)

DEFAULT_LEASE_TTL = timedelta(minutes=5)


class AcquireOutcome(str, enum.Enum):
    ACQUIRED = "acquired"
    RECLAIMED = "reclaimed"   # an expired lease was taken over
    CONTENDED = "contended"   # another worker holds a live lease


@dataclass(frozen=True)
class LeaseResult:
    outcome: AcquireOutcome
    lease: Optional[Lease] = None

    @property
    def acquired(self) -> bool:
        return self.outcome is not AcquireOutcome.CONTENDED


class LeaseLockManager:
    def __init__(self, session: AsyncSession, default_ttl: timedelta = DEFAULT_LEASE_TTL):
        self._session = session
        self._default_ttl = default_ttl

    async def _claim(self, item_id: uuid.UUID, worker_id: str, condition, now: datetime, expires_at: datetime) -> bool:
        result = await self._session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id, condition)
            .values(lease_worker_id=worker_id, lease_locked_at=now, lease_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def acquire(
        self,
        item_id: uuid.UUID,
        worker_id: str,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> LeaseResult:
        """Claim ``item_id`` for ``worker_id`` if it has no live lease."""
        now = now or utcnow()
        expires_at = now + (ttl or self._default_ttl)

        outcome = AcquireOutcome.CONTENDED
        if await self._claim(
            item_id,
            worker_id,
            or_(WorkItem.lease_worker_id.is_(None), WorkItem.lease_expires_at.is_(None)),
            now,
            expires_at,
        ):
            outcome = AcquireOutcome.ACQUIRED
        elif await self._claim(item_id, worker_id, WorkItem.lease_expires_at <= now, now, expires_at):
            outcome = AcquireOutcome.RECLAIMED
        await self._session.commit()

        lease_attempts.labels(outcome=outcome.value).inc()
        if outcome is AcquireOutcome.CONTENDED:
            log.debug("lease_contended", item_id=str(item_id), worker_id=worker_id)
            return LeaseResult(outcome)
        if outcome is AcquireOutcome.RECLAIMED:
            log.info("stale_lease_reclaimed", item_id=str(item_id), worker_id=worker_id)
        return LeaseResult(outcome, Lease(worker_id=worker_id, locked_at=now, expires_at=expires_at))

    async def release(self, item_id: uuid.UUID, worker_id: str) -> bool:
        """Clear the lease if ``worker_id`` still owns it; no-op otherwise."""
        result = await self._session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id, WorkItem.lease_worker_id == worker_id)
            .values(lease_worker_id=None, lease_locked_at=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return result.rowcount == 1

    async def renew(
        self,
        item_id: uuid.UUID,
        worker_id: str,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Push expires_at forward while ``worker_id`` is still the owner."""
        now = now or utcnow()
        result = await self._session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id, WorkItem.lease_worker_id == worker_id)
            .values(lease_expires_at=now + (ttl or self._default_ttl))
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        renewed = result.rowcount == 1
        if not renewed:
            log.warning("lease_lost", item_id=str(item_id), worker_id=worker_id)
        return renewed

    async def release_all(self, worker_id: str) -> int:
        """Drop every lease held by ``worker_id`` (worker shutdown)."""
        result = await self._session.execute(
            update(WorkItem)
            .where(WorkItem.lease_worker_id == worker_id)
            .values(lease_worker_id=None, lease_locked_at=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        if result.rowcount:
            log.info("leases_released", worker_id=worker_id, count=result.rowcount)
        return result.rowcount
