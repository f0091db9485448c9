from .base import Base
from .work_item import FUEROS, Lease, UpdateType, WorkItem, WorkItemUpdate
from .hourly_stat import ErrorType, HourlyErrorCount, HourlyStat, ScalingAction, ScalingEvent, WorkerType
from .daily_stat import DailyStat, DayStatus, RunStatus, WorkerErrorLog, WorkerRun
from .alert import Alert, AlertScope, AlertType
from .daily_summary import DailySummary
from .manager_state import ManagerSnapshot, ManagerState
from .worker_config import WorkerConfigRecord

__all__ = [
    "Base",
    "FUEROS",
    "Lease",
    "UpdateType",
    "WorkItem",
    "WorkItemUpdate",
    "ErrorType",
    "HourlyErrorCount",
    "HourlyStat",
    "ScalingAction",
    "ScalingEvent",
    "WorkerType",
    "DailyStat",
    "DayStatus",
    "RunStatus",
    "WorkerErrorLog",
    "WorkerRun",
    "Alert",
    "AlertScope",
    "AlertType",
    "DailySummary",
    "ManagerSnapshot",
    "ManagerState",
    "WorkerConfigRecord",
]
