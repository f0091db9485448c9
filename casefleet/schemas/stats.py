"""Pydantic schemas for statistics reports and read responses."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from casefleet.models.daily_stat import RunStatus
from casefleet.models.hourly_stat import ErrorType, ScalingAction


class HourlyIncrements(BaseModel):
    """Counters added to the current hour's row by a worker report."""

    processed: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    movimientos_found: int = Field(default=0, ge=0)
    # One observation; also feeds min/max
    processing_time_ms: Optional[int] = Field(default=None, ge=0)


class DailyIncrements(BaseModel):
    processed: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    movimientos_found: int = Field(default=0, ge=0)
    private_causas: int = Field(default=0, ge=0)
    public_causas: int = Field(default=0, ge=0)
    captcha_attempts: int = Field(default=0, ge=0)
    captcha_successful: int = Field(default=0, ge=0)
    captcha_failed: int = Field(default=0, ge=0)
    total_processing_time: int = Field(default=0, ge=0)


class ScalingEventIn(BaseModel):
    action: ScalingAction
    from_workers: int
    to_workers: int
    reason: Optional[str] = None


class RunProgress(BaseModel):
    """Partial update of a running run; unset fields are left alone."""

    documents_processed: Optional[int] = Field(default=None, ge=0)
    documents_successful: Optional[int] = Field(default=None, ge=0)
    documents_failed: Optional[int] = Field(default=None, ge=0)
    movimientos_found: Optional[int] = Field(default=None, ge=0)


class RunResult(RunProgress):
    status: RunStatus = RunStatus.completed
    error_message: Optional[str] = None


class ErrorReport(BaseModel):
    error_type: ErrorType = ErrorType.unknown
    message: Optional[str] = None
    stack: Optional[str] = None
    work_item_id: Optional[uuid.UUID] = None
    number: Optional[int] = None
    year: Optional[int] = None
    retry_count: int = 0


class WorkOutcome(BaseModel):
    """Result of processing one work item, as reported by a worker."""

    success: bool
    skipped: bool = False
    movimientos_found: int = Field(default=0, ge=0)
    processing_time_ms: Optional[int] = Field(default=None, ge=0)
    error: Optional[ErrorReport] = None
    captcha_attempts: int = Field(default=0, ge=0)
    captcha_failed: int = Field(default=0, ge=0)
    is_private: Optional[bool] = None


class HourlyStatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    hour: int
    fuero: str
    worker_type: str
    processed: int
    successful: int
    failed: int
    skipped: int
    movimientos_found: int
    total_processing_time: int
    avg_processing_time: float
    min_processing_time: Optional[int] = None
    max_processing_time: Optional[int] = None
    manager_cycles: int
    max_active_workers: int
    avg_active_workers: float
    pending_at_start: Optional[int] = None
    pending_at_end: Optional[int] = None


class HourSlot(BaseModel):
    hour: int
    processed: int = 0
    successful: int = 0
    failed: int = 0
    movimientos_found: int = 0
    avg_workers: float = 0.0


class DailyStatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    fuero: str
    worker_type: str
    status: str
    total_to_process: int
    processed: int
    successful: int
    failed: int
    skipped: int
    movimientos_found: int
    private_causas: int
    public_causas: int
    captcha_attempts: int
    captcha_successful: int
    captcha_failed: int
    total_processing_time: int
    last_update: datetime


class DailySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    worker_type: str
    status: str
    totals: dict
    by_fuero: list[dict]
    hourly_distribution: list[dict]
    top_causas: list[dict]
    top_errors: list[dict]
    comparison: Optional[dict] = None
    alerts_count: int
    has_unacknowledged_alerts: bool
    generated_at: datetime


class ChartPoint(BaseModel):
    date: str
    processed: int
    successful: int
    failed: int
    movimientos_found: int
    success_rate: int
    working_hours: int


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    scope: str
    subject: str
    type: str
    fuero: Optional[str] = None
    worker_type: Optional[str] = None
    period_date: Optional[str] = None
    message: str
    acknowledged: bool
    created_at: datetime
