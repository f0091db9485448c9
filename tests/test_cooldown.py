"""Tests for the per item error cooldown."""

import uuid
from datetime import timedelta

from casefleet.models.alert import AlertScope
from casefleet.schemas.config import CooldownConfig
from casefleet.services.alerts import list_active_alerts
from casefleet.services.cooldown import ErrorCooldownController

from .conftest import NOW


async def test_third_failure_parks_item_for_six_hours(session, make_item):
    item = await make_item()
    controller = ErrorCooldownController(session)

    first = await controller.on_failure(item.id, "timeout", now=NOW)
    second = await controller.on_failure(item.id, "timeout", now=NOW)
    third = await controller.on_failure(item.id, "captcha", now=NOW)

    assert first.consecutive_errors == 1
    assert first.skip_until is None
    assert second.skip_until is None
    assert third.consecutive_errors == 3
    assert third.last_error_type == "captcha"
    assert third.skip_until == NOW + timedelta(hours=6)
    assert third.is_cooling_down(NOW + timedelta(hours=5))
    assert not third.is_cooling_down(NOW + timedelta(hours=6))


async def test_success_resets_counter(session, make_item):
    item = await make_item()
    controller = ErrorCooldownController(session)
    await controller.on_failure(item.id, "network", now=NOW)
    await controller.on_failure(item.id, "network", now=NOW)

    await controller.on_success(item.id)
    state = await controller.on_failure(item.id, "network", now=NOW)

    assert state.consecutive_errors == 1
    assert state.skip_until is None


async def test_disabled_cooldown_only_counts(session, make_item):
    item = await make_item()
    controller = ErrorCooldownController(session, CooldownConfig(enabled=False))

    for _ in range(4):
        state = await controller.on_failure(item.id, "unknown", now=NOW)

    assert state.consecutive_errors == 4
    assert state.skip_until is None


async def test_unknown_item(session):
    assert await ErrorCooldownController(session).on_failure(uuid.uuid4(), "unknown", now=NOW) is None


async def test_first_parking_raises_nothing(session, make_item):
    item = await make_item()
    controller = ErrorCooldownController(session)

    for _ in range(3):
        await controller.on_failure(item.id, "page_error", now=NOW)

    assert await list_active_alerts(session, scope=AlertScope.work_item, subject=str(item.id)) == []


async def test_failure_after_cooldown_raises_persistent_failure(session, make_item):
    item = await make_item()
    controller = ErrorCooldownController(session)
    for _ in range(3):
        await controller.on_failure(item.id, "page_error", now=NOW)

    later = NOW + timedelta(hours=6, minutes=1)
    state = await controller.on_failure(item.id, "page_error", now=later)

    assert state.consecutive_errors == 4
    assert state.skip_until == later + timedelta(hours=6)
    alerts = await list_active_alerts(session, scope=AlertScope.work_item, subject=str(item.id))
    assert [alert.type for alert in alerts] == ["persistent_failure"]
