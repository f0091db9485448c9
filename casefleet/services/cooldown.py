"""Per work item failure counter and cooldown window.

on_failure is one atomic UPDATE: the counter is incremented in SQL and
skip_until is set in the same statement when the new count reaches the
limit, so concurrent reports never lose an increment. The cooldown is
advisory: it only removes the item from future candidate pages (see
EligibilitySelector) and never blocks a caller.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import DateTime, case, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.metrics import cooldowns_applied
from casefleet.models.alert import AlertScope, AlertType
from casefleet.models.work_item import WorkItem, as_utc
from casefleet.schemas.config import CooldownConfig
from casefleet.services.alerts import AlertDraft, raise_alert
from casefleet.services.periods import utcnow

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CooldownState:
    consecutive_errors: int
    last_error_type: Optional[str]
    last_error_at: Optional[datetime]
    skip_until: Optional[datetime]

    def is_cooling_down(self, now: datetime) -> bool:
        return self.skip_until is not None and self.skip_until > now


class ErrorCooldownController:
    def __init__(self, session: AsyncSession, config: Optional[CooldownConfig] = None):
        self._session = session
        self._config = config or CooldownConfig()

    async def get_state(self, item_id: uuid.UUID) -> Optional[CooldownState]:
        result = await self._session.execute(
            select(
                WorkItem.consecutive_errors,
                WorkItem.last_error_type,
                WorkItem.last_error_at,
                WorkItem.skip_until,
            ).where(WorkItem.id == item_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return CooldownState(
            consecutive_errors=row.consecutive_errors,
            last_error_type=row.last_error_type,
            last_error_at=as_utc(row.last_error_at),
            skip_until=as_utc(row.skip_until),
        )

    async def on_success(self, item_id: uuid.UUID) -> None:
        await self._session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id)
            .values(consecutive_errors=0)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def on_failure(
        self,
        item_id: uuid.UUID,
        error_type: str,
        now: Optional[datetime] = None,
    ) -> Optional[CooldownState]:
        """Count one failure; park the item once the limit is reached.

        Returns the item's state after the update, or None if it does not exist.
        """
        now = now or utcnow()
        limit = self._config.max_consecutive_errors
        values = {
            "consecutive_errors": WorkItem.consecutive_errors + 1,
            "last_error_type": error_type,
            "last_error_at": now,
        }
        if self._config.enabled:
            values["skip_until"] = case(
                (
                    WorkItem.consecutive_errors + 1 >= limit,
                    literal(now + self._config.cooldown, DateTime(timezone=True)),
                ),
                else_=WorkItem.skip_until,
            )
        await self._session.execute(
            update(WorkItem)
            .where(WorkItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        state = await self.get_state(item_id)
        if state is not None and self._config.enabled and state.consecutive_errors >= limit:
            cooldowns_applied.inc()
            log.warning(
                "work_item_parked",
                item_id=str(item_id),
                consecutive_errors=state.consecutive_errors,
                error_type=error_type,
                skip_until=state.skip_until.isoformat() if state.skip_until else None,
            )
            # Parked again after an earlier cooldown already elapsed
            if state.consecutive_errors > limit:
                await raise_alert(
                    self._session,
                    AlertScope.work_item,
                    str(item_id),
                    AlertDraft(
                        type=AlertType.persistent_failure,
                        message=(
                            f"{state.consecutive_errors} consecutive failures, "
                            f"last error {error_type}"
                        ),
                    ),
                    now=now,
                )
        await self._session.commit()
        return state
