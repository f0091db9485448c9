"""Autoscaling manager.

Each cycle reads the backlog per fuero, decides a recommended worker count,
persists the snapshot plus one history row and raises manager alerts. The
manager only recommends: the process supervisor reads optimal_workers and
starts or stops processes itself. A single manager instance runs the cycle
at a time; that exclusivity is provided by the supervisor.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from casefleet.config import settings
from casefleet.metrics import optimal_workers as optimal_workers_gauge
from casefleet.metrics import pending_backlog, scaling_decisions, stats_write_failures
from casefleet.models.alert import Alert, AlertScope, AlertType
from casefleet.models.hourly_stat import ScalingAction, WorkerType
from casefleet.models.manager_state import ManagerSnapshot, ManagerState
from casefleet.models.work_item import as_utc
from casefleet.schemas.config import ScalingConfig, ScalingConfigPatch
from casefleet.schemas.manager import CycleInputs, CycleResult, ResourceReadings, ScalingDecision
from casefleet.schemas.stats import ScalingEventIn
from casefleet.services import config_store
from casefleet.services.alerts import AlertDraft, list_active_alerts, raise_alert
from casefleet.services.eligibility import EligibilitySelector
from casefleet.services.hourly_stats import record_manager_cycle
from casefleet.services.periods import to_business, utcnow
from casefleet.services.store import append_bounded

log = structlog.get_logger(__name__)

# 24h of one-minute cycles
HISTORY_LIMIT = 1440
# Missed cycles before a running manager is considered stopped
LIVENESS_FACTOR = 3


def is_within_working_hours(config: ScalingConfig, now: datetime) -> bool:
    local = to_business(now)
    return (
        local.isoweekday() in config.work_days
        and config.work_start_hour <= local.hour < config.work_end_hour
    )


def decide(
    config: ScalingConfig,
    fuero: str,
    current: int,
    pending: int,
    resources: ResourceReadings,
    within_hours: bool,
) -> ScalingDecision:
    """Recommend a worker count for one fuero: at most one step per cycle."""
    target = current
    if pending > config.scale_threshold:
        if not within_hours:
            reason = "outside_working_hours"
        elif resources.cpu_usage >= config.cpu_threshold:
            reason = "cpu_limit"
        elif resources.memory_usage >= config.memory_threshold:
            reason = "memory_limit"
        else:
            target = current + 1
            reason = "backlog_above_threshold"
    elif pending < config.scale_down_threshold:
        target = current - 1
        reason = "backlog_below_threshold"
    else:
        reason = "backlog_within_range"

    optimal = max(config.min_workers, min(config.max_workers, target))
    if optimal > current:
        action = ScalingAction.scale_up
    elif optimal < current:
        action = ScalingAction.scale_down
    else:
        action = ScalingAction.no_change
    return ScalingDecision(
        fuero=fuero,
        current=current,
        pending=pending,
        optimal=optimal,
        action=action,
        reason=reason,
    )


def evaluate_manager_alerts(
    config: ScalingConfig,
    workers: dict[str, int],
    pending: dict[str, int],
    resources: ResourceReadings,
) -> list[AlertDraft]:
    drafts = []
    if resources.cpu_usage >= config.cpu_threshold:
        drafts.append(
            AlertDraft(
                type=AlertType.high_cpu,
                message=f"CPU usage {resources.cpu_usage * 100:.0f}% at or above {config.cpu_threshold * 100:.0f}%",
            )
        )
    if resources.memory_usage >= config.memory_threshold:
        drafts.append(
            AlertDraft(
                type=AlertType.high_memory,
                message=f"Memory usage {resources.memory_usage * 100:.0f}% at or above {config.memory_threshold * 100:.0f}%",
            )
        )
    for fuero in config.fueros:
        backlog = pending.get(fuero, 0)
        if workers.get(fuero, 0) == 0 and backlog > 0:
            drafts.append(
                AlertDraft(
                    type=AlertType.no_workers,
                    message=f"No active workers with {backlog} pending",
                    fuero=fuero,
                )
            )
        if backlog > config.high_pending_threshold:
            drafts.append(
                AlertDraft(
                    type=AlertType.high_pending,
                    message=f"{backlog} pending above {config.high_pending_threshold}",
                    fuero=fuero,
                )
            )
    return drafts


class AutoscalingManager:
    def __init__(
        self,
        session: AsyncSession,
        name: Optional[str] = None,
        worker_type: WorkerType = WorkerType.app_update,
    ):
        self.session = session
        self.name = name or settings.manager_name
        self.worker_type = worker_type.value

    async def run_cycle(self, inputs: CycleInputs, now: Optional[datetime] = None) -> CycleResult:
        now = now or utcnow()
        state = await config_store.ensure_manager_state(self.session, self.name, now)
        config = ScalingConfig.model_validate(state.config)
        within_hours = is_within_working_hours(config, now)

        selector = EligibilitySelector(self.session, config.eligibility())
        pending = await selector.count_by_fuero(config.fueros, now)
        workers = {fuero: inputs.workers.get(fuero, 0) for fuero in config.fueros}
        decisions = [
            decide(config, fuero, workers[fuero], pending[fuero], inputs.resources, within_hours)
            for fuero in config.fueros
        ]
        optimal = {d.fuero: d.optimal for d in decisions}
        resources = inputs.resources.model_dump()

        result = await self.session.execute(
            update(ManagerState)
            .where(ManagerState.name == self.name)
            .values(
                workers=workers,
                pending=pending,
                optimal_workers=optimal,
                system_resources=resources,
                is_running=True,
                is_within_working_hours=within_hours,
                last_cycle_at=now,
                cycle_count=ManagerState.cycle_count + 1,
                last_update=now,
            )
            .returning(ManagerState.cycle_count)
            .execution_options(synchronize_session=False)
        )
        cycle_count = result.scalar_one()

        await append_bounded(
            self.session,
            ManagerSnapshot,
            scope={"manager_name": self.name},
            values={
                "recorded_at": now,
                "workers": workers,
                "pending": pending,
                "optimal_workers": optimal,
                "system_resources": resources,
            },
            cap=HISTORY_LIMIT,
        )

        raised = []
        for draft in evaluate_manager_alerts(config, workers, pending, inputs.resources):
            if await raise_alert(
                self.session,
                AlertScope.manager,
                self.name,
                draft,
                worker_type=self.worker_type,
                now=now,
            ):
                raised.append(draft.type.value)

        await self._record_cycle_stats(decisions, now)
        await self.session.commit()

        for d in decisions:
            pending_backlog.labels(fuero=d.fuero).set(d.pending)
            optimal_workers_gauge.labels(fuero=d.fuero).set(d.optimal)
            scaling_decisions.labels(fuero=d.fuero, action=d.action.value).inc()

        log.info(
            "manager_cycle",
            manager=self.name,
            cycle=cycle_count,
            within_working_hours=within_hours,
            pending=pending,
            optimal_workers=optimal,
            alerts=raised,
        )
        return CycleResult(
            cycle_count=cycle_count,
            within_working_hours=within_hours,
            decisions=decisions,
            alerts_raised=raised,
        )

    async def _record_cycle_stats(self, decisions: list[ScalingDecision], now: datetime) -> None:
        """Hourly worker/backlog telemetry in a savepoint; a failure never undoes the cycle."""
        try:
            async with self.session.begin_nested():
                for d in decisions:
                    await record_manager_cycle(
                        self.session,
                        d.fuero,
                        self.worker_type,
                        active_workers=d.current,
                        pending=d.pending,
                        scaling_event=ScalingEventIn(
                            action=d.action,
                            from_workers=d.current,
                            to_workers=d.optimal,
                            reason=d.reason,
                        ),
                        now=now,
                    )
        except SQLAlchemyError as exc:
            stats_write_failures.labels(operation="manager_cycle").inc()
            log.warning("stats_write_failed", operation="manager_cycle", error=str(exc))

    async def report_workers(self, workers: dict[str, int], now: Optional[datetime] = None) -> ManagerState:
        """Store the actual running counts reported by the process supervisor."""
        now = now or utcnow()
        await config_store.ensure_manager_state(self.session, self.name, now)
        await self.session.execute(
            update(ManagerState)
            .where(ManagerState.name == self.name)
            .values(reported_workers=workers, last_update=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return await self.get_state()

    async def mark_stopped(self, now: Optional[datetime] = None, reason: str = "Manager stopped") -> None:
        now = now or utcnow()
        await config_store.ensure_manager_state(self.session, self.name, now)
        await self.session.execute(
            update(ManagerState)
            .where(ManagerState.name == self.name)
            .values(is_running=False, last_update=now)
            .execution_options(synchronize_session=False)
        )
        await raise_alert(
            self.session,
            AlertScope.manager,
            self.name,
            AlertDraft(type=AlertType.manager_stopped, message=reason),
            worker_type=self.worker_type,
            now=now,
        )
        await self.session.commit()
        log.warning("manager_stopped", manager=self.name, reason=reason)

    async def check_liveness(self, now: Optional[datetime] = None) -> bool:
        """Mark the manager stopped when it claims to run but missed its cycles.

        Returns True when the manager was marked stopped by this call.
        """
        now = now or utcnow()
        state = await config_store.ensure_manager_state(self.session, self.name, now)
        await self.session.commit()
        if not state.is_running or state.last_cycle_at is None:
            return False

        config = ScalingConfig.model_validate(state.config)
        silence = now - as_utc(state.last_cycle_at)
        if silence <= config.check_interval * LIVENESS_FACTOR:
            return False

        await self.mark_stopped(
            now,
            reason=f"No manager cycle for {int(silence.total_seconds())}s",
        )
        return True

    async def get_state(self) -> ManagerState:
        state = await config_store.ensure_manager_state(self.session, self.name)
        await self.session.commit()
        return state

    async def get_history(
        self, hours_back: float = 24, now: Optional[datetime] = None
    ) -> list[ManagerSnapshot]:
        cutoff = (now or utcnow()) - timedelta(hours=hours_back)
        result = await self.session.execute(
            select(ManagerSnapshot)
            .where(ManagerSnapshot.manager_name == self.name, ManagerSnapshot.recorded_at >= cutoff)
            .order_by(ManagerSnapshot.id)
        )
        return list(result.scalars().all())

    async def get_active_alerts(self) -> list[Alert]:
        return await list_active_alerts(self.session, AlertScope.manager, self.name)

    async def update_config(self, patch: ScalingConfigPatch) -> ScalingConfig:
        return await config_store.update_scaling_config(self.session, self.name, patch)
