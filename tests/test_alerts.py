"""Tests for alert deduplication, eviction and acknowledgement."""

import asyncio

from casefleet.models.alert import AlertScope, AlertType
from casefleet.services.alerts import (
    AlertDraft,
    acknowledge_alert,
    evaluate_daily_rules,
    list_active_alerts,
    raise_alert,
)

from .conftest import NOW

DRAFT = AlertDraft(type=AlertType.high_error_rate, message="Error rate 12.5% (15/120)")
SUBJECT = "2026-03-10:CIV:app-update"


async def test_open_alert_is_not_duplicated(session):
    assert await raise_alert(session, AlertScope.daily, SUBJECT, DRAFT, now=NOW) is True
    assert await raise_alert(session, AlertScope.daily, SUBJECT, DRAFT, now=NOW) is False
    await session.commit()

    alerts = await list_active_alerts(session, AlertScope.daily, SUBJECT)
    assert len(alerts) == 1
    assert alerts[0].message == DRAFT.message


async def test_concurrent_raisers_store_one_alert(session_factory):
    async def attempt():
        async with session_factory() as db:
            raised = await raise_alert(db, AlertScope.daily, SUBJECT, DRAFT, now=NOW)
            await db.commit()
            return raised

    results = await asyncio.gather(*(attempt() for _ in range(6)))

    assert results.count(True) == 1
    async with session_factory() as db:
        assert len(await list_active_alerts(db, AlertScope.daily, SUBJECT)) == 1


async def test_acknowledged_alert_can_be_raised_again(session):
    await raise_alert(session, AlertScope.daily, SUBJECT, DRAFT, now=NOW)
    await session.commit()
    [alert] = await list_active_alerts(session, AlertScope.daily, SUBJECT)

    assert await acknowledge_alert(session, alert.id, now=NOW) is True
    assert await acknowledge_alert(session, alert.id, now=NOW) is False
    assert await list_active_alerts(session, AlertScope.daily, SUBJECT) == []

    assert await raise_alert(session, AlertScope.daily, SUBJECT, DRAFT, now=NOW) is True
    await session.commit()
    assert len(await list_active_alerts(session, AlertScope.daily, SUBJECT)) == 1


async def test_fuero_is_part_of_the_dedup_key(session):
    for fuero in ("CIV", "CNT", "CIV"):
        await raise_alert(
            session,
            AlertScope.manager,
            "app-update-manager",
            AlertDraft(type=AlertType.no_workers, message="No active workers", fuero=fuero),
            now=NOW,
        )
    await session.commit()

    alerts = await list_active_alerts(session, AlertScope.manager)
    assert sorted(a.fuero for a in alerts) == ["CIV", "CNT"]


async def test_cap_evicts_oldest(session):
    fueros = ["CIV", "COM", "CNT", "CSS", "CAF"]
    for fuero in fueros:
        await raise_alert(
            session,
            AlertScope.manager,
            "app-update-manager",
            AlertDraft(type=AlertType.high_pending, message="backlog", fuero=fuero),
            cap=3,
            now=NOW,
        )
    await session.commit()

    alerts = await list_active_alerts(session, AlertScope.manager, "app-update-manager")
    assert [a.fuero for a in alerts] == fueros[2:]


def test_error_rate_rule():
    assert [d.type for d in evaluate_daily_rules(120, 15, 0, 0)] == [AlertType.high_error_rate]
    assert evaluate_daily_rules(120, 8, 0, 0) == []
    # Not enough volume to judge
    assert evaluate_daily_rules(10, 9, 0, 0) == []


def test_captcha_rule():
    assert [d.type for d in evaluate_daily_rules(0, 0, 10, 3)] == [AlertType.captcha_issues]
    assert evaluate_daily_rules(0, 0, 10, 2) == []
    assert evaluate_daily_rules(0, 0, 5, 5) == []
