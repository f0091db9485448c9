"""Alert engine shared by the daily stats, the cooldown controller and the manager.

Alerts are deduplicated per (scope, subject, type, fuero) while the first
one is unacknowledged: the insert goes through ON CONFLICT DO NOTHING
against a partial unique index, so two concurrent raisers still store a
single alert. Alerts never expire; they are only evicted by the per-subject
cap, oldest first.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.models.alert import Alert, AlertScope, AlertType
from casefleet.services.periods import utcnow
from casefleet.services.store import upsert

log = structlog.get_logger(__name__)

ALERT_LIMIT = 100

# Daily rules
ERROR_RATE_THRESHOLD = 0.10
ERROR_RATE_MIN_PROCESSED = 10
CAPTCHA_FAIL_THRESHOLD = 0.20
CAPTCHA_MIN_ATTEMPTS = 5


@dataclass(frozen=True)
class AlertDraft:
    type: AlertType
    message: str
    fuero: Optional[str] = None


def dedup_key(scope: AlertScope, subject: str, alert_type: AlertType, fuero: Optional[str]) -> str:
    return f"{scope.value}:{subject}:{alert_type.value}:{fuero or '*'}"


def evaluate_daily_rules(
    processed: int,
    failed: int,
    captcha_attempts: int,
    captcha_failed: int,
) -> list[AlertDraft]:
    """Alert rules evaluated after each finished run."""
    drafts = []

    if processed > ERROR_RATE_MIN_PROCESSED:
        error_rate = failed / processed
        if error_rate > ERROR_RATE_THRESHOLD:
            drafts.append(
                AlertDraft(
                    type=AlertType.high_error_rate,
                    message=f"Error rate {error_rate * 100:.1f}% ({failed}/{processed})",
                )
            )

    if captcha_attempts > CAPTCHA_MIN_ATTEMPTS:
        fail_rate = captcha_failed / captcha_attempts
        if fail_rate > CAPTCHA_FAIL_THRESHOLD:
            drafts.append(
                AlertDraft(
                    type=AlertType.captcha_issues,
                    message=f"{fail_rate * 100:.1f}% of captchas failed ({captcha_failed}/{captcha_attempts})",
                )
            )

    return drafts


async def raise_alert(
    session: AsyncSession,
    scope: AlertScope,
    subject: str,
    draft: AlertDraft,
    *,
    worker_type: Optional[str] = None,
    period_date: Optional[str] = None,
    cap: int = ALERT_LIMIT,
    now: Optional[datetime] = None,
) -> bool:
    """Store ``draft`` unless an open alert of the same kind exists.

    Does not commit. Returns True when a new alert was stored.
    """
    now = now or utcnow()
    stmt = (
        upsert(session, Alert)
        .values(
            scope=scope.value,
            subject=subject,
            type=draft.type.value,
            fuero=draft.fuero,
            worker_type=worker_type,
            period_date=period_date,
            message=draft.message,
            dedup_key=dedup_key(scope, subject, draft.type, draft.fuero),
            acknowledged=False,
            created_at=now,
        )
        .on_conflict_do_nothing()
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        return False

    log.warning(
        "alert_raised",
        scope=scope.value,
        subject=subject,
        type=draft.type.value,
        fuero=draft.fuero,
        alert_message=draft.message,
    )

    # Evict beyond the cap, oldest first
    newest = (
        select(Alert.id)
        .where(Alert.scope == scope.value, Alert.subject == subject)
        .order_by(Alert.id.desc())
        .limit(cap)
    )
    await session.execute(
        Alert.__table__.delete().where(
            Alert.scope == scope.value,
            Alert.subject == subject,
            Alert.id.not_in(newest),
        )
    )
    return True


async def acknowledge_alert(
    session: AsyncSession, alert_id: int, now: Optional[datetime] = None
) -> bool:
    result = await session.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.acknowledged.is_(False))
        .values(acknowledged=True, acknowledged_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount == 1:
        log.info("alert_acknowledged", alert_id=alert_id)
        return True
    return False


async def list_active_alerts(
    session: AsyncSession,
    scope: Optional[AlertScope] = None,
    subject: Optional[str] = None,
    period_date: Optional[str] = None,
) -> list[Alert]:
    stmt = select(Alert).where(Alert.acknowledged.is_(False))
    if scope is not None:
        stmt = stmt.where(Alert.scope == scope.value)
    if subject is not None:
        stmt = stmt.where(Alert.subject == subject)
    if period_date is not None:
        stmt = stmt.where(Alert.period_date == period_date)
    result = await session.execute(stmt.order_by(Alert.id))
    return list(result.scalars().all())
