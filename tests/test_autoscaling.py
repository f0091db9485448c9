"""Tests for the autoscaling manager."""

from datetime import timedelta

import pytest

from casefleet.models.hourly_stat import ScalingAction
from casefleet.schemas.config import ScalingConfig, ScalingConfigPatch
from casefleet.schemas.manager import CycleInputs, ResourceReadings
from casefleet.services import autoscaling
from casefleet.services.autoscaling import (
    AutoscalingManager,
    decide,
    evaluate_manager_alerts,
    is_within_working_hours,
)
from casefleet.services.hourly_stats import get_hourly_rows, get_scaling_events

from .conftest import NOW

IDLE = ResourceReadings(cpu_usage=0.2, memory_usage=0.4)


def inputs(workers=None, resources=IDLE) -> CycleInputs:
    return CycleInputs(workers=workers or {}, resources=resources)


@pytest.fixture
async def manager(session):
    manager = AutoscalingManager(session, name="test-manager")
    await manager.update_config(ScalingConfigPatch(fueros=["CIV", "CNT"], scale_threshold=2, scale_down_threshold=1))
    return manager


class TestDecide:
    config = ScalingConfig(max_workers=3, min_workers=0)

    def test_backlog_above_threshold_adds_one_worker(self):
        d = decide(self.config, "CIV", current=1, pending=800, resources=IDLE, within_hours=True)
        assert (d.optimal, d.action) == (2, ScalingAction.scale_up)

    def test_clamped_to_max(self):
        d = decide(self.config, "CIV", current=3, pending=800, resources=IDLE, within_hours=True)
        assert (d.optimal, d.action) == (3, ScalingAction.no_change)

    def test_backlog_below_threshold_removes_one_worker(self):
        d = decide(self.config, "CIV", current=2, pending=20, resources=IDLE, within_hours=True)
        assert (d.optimal, d.action) == (1, ScalingAction.scale_down)

    def test_never_below_min(self):
        config = ScalingConfig(min_workers=1, max_workers=3)
        d = decide(config, "CIV", current=1, pending=0, resources=IDLE, within_hours=True)
        assert (d.optimal, d.action) == (1, ScalingAction.no_change)

    def test_within_range_holds(self):
        d = decide(self.config, "CIV", current=2, pending=200, resources=IDLE, within_hours=True)
        assert (d.optimal, d.reason) == (2, "backlog_within_range")

    @pytest.mark.parametrize(
        "resources, within_hours, reason",
        [
            (IDLE, False, "outside_working_hours"),
            (ResourceReadings(cpu_usage=0.9, memory_usage=0.4), True, "cpu_limit"),
            (ResourceReadings(cpu_usage=0.75, memory_usage=0.4), True, "cpu_limit"),
            (ResourceReadings(cpu_usage=0.2, memory_usage=0.95), True, "memory_limit"),
        ],
    )
    def test_scale_up_is_blocked(self, resources, within_hours, reason):
        d = decide(self.config, "CIV", current=1, pending=800, resources=resources, within_hours=within_hours)
        assert (d.optimal, d.action, d.reason) == (1, ScalingAction.no_change, reason)


def test_working_hours():
    config = ScalingConfig()
    assert is_within_working_hours(config, NOW)
    # 23:00 in Buenos Aires
    assert not is_within_working_hours(config, NOW + timedelta(hours=11))
    # Saturday
    assert not is_within_working_hours(config, NOW + timedelta(days=4))


async def test_cycle_persists_state_and_hourly_gauges(manager, make_item):
    for _ in range(3):
        await make_item(fuero="CIV")

    result = await manager.run_cycle(inputs({"CIV": 1}), now=NOW)

    assert result.cycle_count == 1
    assert result.within_working_hours
    assert result.optimal_workers == {"CIV": 2, "CNT": 0}

    state = await manager.get_state()
    assert state.is_running
    assert state.pending == {"CIV": 3, "CNT": 0}
    assert state.workers == {"CIV": 1, "CNT": 0}
    assert state.optimal_workers == {"CIV": 2, "CNT": 0}

    rows = await get_hourly_rows(manager.session, "2026-03-10", fuero="CIV")
    assert rows[0].manager_cycles == 1
    assert rows[0].pending_at_end == 3
    events = await get_scaling_events(manager.session, "2026-03-10", 12, "CIV", "app-update")
    assert [(e.from_workers, e.to_workers) for e in events] == [(1, 2)]

    second = await manager.run_cycle(inputs({"CIV": 2}), now=NOW + timedelta(minutes=1))
    assert second.cycle_count == 2


async def test_history_is_bounded(manager, monkeypatch):
    monkeypatch.setattr(autoscaling, "HISTORY_LIMIT", 5)

    for minute in range(7):
        await manager.run_cycle(inputs(), now=NOW + timedelta(minutes=minute))

    history = await manager.get_history(now=NOW + timedelta(minutes=6))
    assert len(history) == 5
    assert history[0].recorded_at.replace(tzinfo=None) == (NOW + timedelta(minutes=2)).replace(tzinfo=None)


async def test_manager_alerts_are_raised_once(manager, make_item):
    await make_item(fuero="CIV")
    hot = ResourceReadings(cpu_usage=0.9, memory_usage=0.5)

    first = await manager.run_cycle(inputs(resources=hot), now=NOW)
    second = await manager.run_cycle(inputs(resources=hot), now=NOW + timedelta(minutes=1))

    assert sorted(first.alerts_raised) == ["high_cpu", "no_workers"]
    assert second.alerts_raised == []
    alerts = await manager.get_active_alerts()
    assert sorted((a.type, a.fuero) for a in alerts) == [("high_cpu", None), ("no_workers", "CIV")]


def test_resource_alerts_fire_where_scale_up_is_blocked():
    config = ScalingConfig()
    at_limit = ResourceReadings(cpu_usage=config.cpu_threshold, memory_usage=config.memory_threshold)

    drafts = evaluate_manager_alerts(config, {}, {}, at_limit)

    assert [d.type.value for d in drafts] == ["high_cpu", "high_memory"]
    assert decide(config, "CIV", current=1, pending=800, resources=at_limit, within_hours=True).reason == "cpu_limit"


async def test_high_memory_alert(manager):
    result = await manager.run_cycle(inputs(resources=ResourceReadings(cpu_usage=0.2, memory_usage=0.9)), now=NOW)

    assert result.alerts_raised == ["high_memory"]
    [alert] = await manager.get_active_alerts()
    assert alert.type == "high_memory"
    assert alert.fuero is None


async def test_high_pending_alert(manager, make_item):
    await manager.update_config(ScalingConfigPatch(high_pending_threshold=1))
    for _ in range(2):
        await make_item(fuero="CIV")

    result = await manager.run_cycle(inputs({"CIV": 1}), now=NOW)

    assert result.alerts_raised == ["high_pending"]
    [alert] = await manager.get_active_alerts()
    assert (alert.type, alert.fuero) == ("high_pending", "CIV")


async def test_mark_stopped(manager):
    await manager.run_cycle(inputs(), now=NOW)

    await manager.mark_stopped(NOW + timedelta(minutes=1))

    state = await manager.get_state()
    assert not state.is_running
    assert [a.type for a in await manager.get_active_alerts()] == ["manager_stopped"]


async def test_liveness_check(manager):
    await manager.run_cycle(inputs(), now=NOW)

    assert await manager.check_liveness(NOW + timedelta(minutes=2)) is False
    assert await manager.check_liveness(NOW + timedelta(minutes=4)) is True
    assert not (await manager.get_state()).is_running
    # Already marked stopped
    assert await manager.check_liveness(NOW + timedelta(minutes=10)) is False


async def test_never_started_manager_is_not_stopped(session):
    assert await AutoscalingManager(session, name="idle").check_liveness(NOW) is False


async def test_report_workers(manager):
    state = await manager.report_workers({"CIV": 2}, now=NOW)
    assert state.reported_workers == {"CIV": 2}
