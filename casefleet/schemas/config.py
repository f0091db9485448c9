"""Typed domain configuration and partial-update patches.

Configuration documents are passed explicitly to the services and persisted
one row per logical key (see services/config_store.py). Partial updates go
through the *Patch models and merge_patch(); there are no path-string writes.
"""

from datetime import timedelta
from typing import Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from casefleet.errors import ConfigError
from casefleet.models.hourly_stat import WorkerType

DEFAULT_SOURCES = ["app"]
DEFAULT_FUEROS = ["CIV", "CSS", "CNT", "COM"]


class CooldownConfig(BaseModel):
    max_consecutive_errors: int = Field(default=3, ge=1, le=10)
    cooldown_hours: float = Field(default=6, ge=1, le=168)
    enabled: bool = True

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)


class EligibilityCriteria(BaseModel):
    """Business filter of the candidate queue."""

    allowed_sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES), min_length=1)
    update_threshold_hours: float = Field(default=12, ge=0)
    batch_size: int = Field(default=5, ge=1, le=100)

    @property
    def update_threshold(self) -> timedelta:
        return timedelta(hours=self.update_threshold_hours)


class WorkerConfig(BaseModel):
    worker_id: str = "app_update_main"
    worker_type: WorkerType = WorkerType.app_update
    fuero: Optional[str] = None
    batch_size: int = Field(default=5, ge=1, le=20)
    update_threshold_hours: float = Field(default=12, ge=1)
    allowed_sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES), min_length=1)
    lease_ttl_seconds: int = Field(default=300, ge=1)
    error_cooldown: CooldownConfig = Field(default_factory=CooldownConfig)

    @property
    def lease_ttl(self) -> timedelta:
        return timedelta(seconds=self.lease_ttl_seconds)

    def eligibility(self) -> EligibilityCriteria:
        return EligibilityCriteria(
            allowed_sources=self.allowed_sources,
            update_threshold_hours=self.update_threshold_hours,
            batch_size=self.batch_size,
        )


class ScalingConfig(BaseModel):
    check_interval_seconds: int = Field(default=60, ge=1)

    min_workers: int = Field(default=0, ge=0)
    max_workers: int = Field(default=3, ge=0)

    scale_threshold: int = Field(default=500, ge=0)
    scale_down_threshold: int = Field(default=50, ge=0)
    high_pending_threshold: int = Field(default=2000, ge=0)

    update_threshold_hours: float = Field(default=12, ge=1)
    allowed_sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES), min_length=1)

    # Fractions in [0, 1]
    cpu_threshold: float = Field(default=0.75, gt=0, le=1)
    memory_threshold: float = Field(default=0.80, gt=0, le=1)

    # Business timezone; ISO weekdays (1 = Monday)
    work_start_hour: int = Field(default=8, ge=0, le=23)
    work_end_hour: int = Field(default=22, ge=1, le=24)
    work_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])

    fueros: list[str] = Field(default_factory=lambda: list(DEFAULT_FUEROS), min_length=1)
    # Process supervisor names per fuero
    worker_names: dict[str, str] = Field(
        default_factory=lambda: {
            "CIV": "pjn-app-update-civil",
            "CSS": "pjn-app-update-ss",
            "CNT": "pjn-app-update-trabajo",
            "COM": "pjn-app-update-comercial",
        }
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScalingConfig":
        if self.min_workers > self.max_workers:
            raise ValueError("min_workers must not exceed max_workers")
        if self.work_start_hour >= self.work_end_hour:
            raise ValueError("work_start_hour must be before work_end_hour")
        if any(day < 1 or day > 7 for day in self.work_days):
            raise ValueError("work_days are ISO weekdays (1-7)")
        return self

    @property
    def check_interval(self) -> timedelta:
        return timedelta(seconds=self.check_interval_seconds)

    def eligibility(self) -> EligibilityCriteria:
        return EligibilityCriteria(
            allowed_sources=self.allowed_sources,
            update_threshold_hours=self.update_threshold_hours,
        )


class CooldownConfigPatch(BaseModel):
    max_consecutive_errors: Optional[int] = None
    cooldown_hours: Optional[float] = None
    enabled: Optional[bool] = None


class WorkerConfigPatch(BaseModel):
    worker_type: Optional[WorkerType] = None
    fuero: Optional[str] = None
    batch_size: Optional[int] = None
    update_threshold_hours: Optional[float] = None
    allowed_sources: Optional[list[str]] = None
    lease_ttl_seconds: Optional[int] = None
    error_cooldown: Optional[CooldownConfigPatch] = None


class ScalingConfigPatch(BaseModel):
    check_interval_seconds: Optional[int] = None
    min_workers: Optional[int] = None
    max_workers: Optional[int] = None
    scale_threshold: Optional[int] = None
    scale_down_threshold: Optional[int] = None
    high_pending_threshold: Optional[int] = None
    update_threshold_hours: Optional[float] = None
    allowed_sources: Optional[list[str]] = None
    cpu_threshold: Optional[float] = None
    memory_threshold: Optional[float] = None
    work_start_hour: Optional[int] = None
    work_end_hour: Optional[int] = None
    work_days: Optional[list[int]] = None
    fueros: Optional[list[str]] = None
    worker_names: Optional[dict[str, str]] = None


ConfigT = TypeVar("ConfigT", bound=BaseModel)


def merge_patch(base: ConfigT, patch: BaseModel) -> ConfigT:
    """Apply the fields explicitly set on ``patch`` to ``base``.

    Nested patch models are merged into the nested config recursively. An
    explicit ``None`` leaves the field unchanged. The merged document is
    validated again, so a patch can never produce an invalid configuration.

    Raises:
        ConfigError: the merged configuration fails validation.
    """
    data = base.model_dump()
    for name in patch.model_fields_set:
        value = getattr(patch, name)
        current = getattr(base, name, None)
        if isinstance(value, BaseModel) and isinstance(current, BaseModel):
            data[name] = merge_patch(current, value).model_dump()
        elif value is None:
            continue
        else:
            data[name] = value
    try:
        return type(base).model_validate(data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
