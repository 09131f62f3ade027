"""
Pydantic schemas for the /scheduled-jobs endpoints.

These are NOT database models; they define the HTTP API contract:
- ScheduledJobCreate / ScheduledJobUpdate: request bodies
- ScheduledJobResponse / ScheduledJobListResponse: response bodies
- TriggerRequest, RunOnceRequest, RetryFailuresRequest: run-creating actions
- EnqueuedRunResponse: what every run-creating action returns

Cron syntax and timezone are validated here, so an invalid definition is
rejected with 422 before anything touches the database.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from models.enums import JobType
from scheduler.cron import InvalidCronExpression, validate_cron


def _check_schedule(cron_expression: Optional[str], tz_name: Optional[str]) -> None:
    try:
        validate_cron(cron_expression or "@never", tz_name or "UTC")
    except InvalidCronExpression as e:
        raise ValueError(str(e)) from e


class ScheduledJobCreate(BaseModel):
    """Request body for POST /scheduled-jobs/."""

    brand_id: str = Field(..., min_length=1, max_length=64)
    customer_id: str = Field(..., min_length=1, max_length=64)
    job_type: JobType
    cron_expression: str = Field(..., min_length=1, max_length=120, examples=["0 6 * * *"])
    timezone: str = Field(default="UTC", examples=["Europe/Berlin"])
    is_active: bool = True
    metadata: dict = Field(
        default_factory=dict,
        examples=[{"engines": ["chatgpt", "perplexity"], "locale": "en-US"}],
    )
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def schedule_must_parse(self) -> "ScheduledJobCreate":
        _check_schedule(self.cron_expression, self.timezone)
        return self


_NOT_NULLABLE = ("job_type", "cron_expression", "timezone", "is_active")


class ScheduledJobUpdate(BaseModel):
    """Request body for PATCH /scheduled-jobs/{id}. Only the fields sent are changed."""

    job_type: Optional[JobType] = None
    cron_expression: Optional[str] = Field(default=None, min_length=1, max_length=120)
    timezone: Optional[str] = None
    is_active: Optional[bool] = None
    metadata: Optional[dict] = None
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "ScheduledJobUpdate":
        nulled = sorted(f for f in _NOT_NULLABLE if f in self.model_fields_set and getattr(self, f) is None)
        if nulled:
            raise ValueError(f"Fields cannot be null: {nulled}")
        return self

    @model_validator(mode="after")
    def schedule_must_parse(self) -> "ScheduledJobUpdate":
        if self.cron_expression is not None or self.timezone is not None:
            # the stored half is re-checked by the service
            _check_schedule(self.cron_expression, self.timezone)
        return self


class ScheduledJobResponse(BaseModel):
    id: UUID
    brand_id: str
    customer_id: str
    job_type: str
    cron_expression: str
    timezone: str
    is_active: bool
    metadata: dict = Field(default_factory=dict, validation_alias=AliasChoices("job_metadata", "metadata"))
    created_by: Optional[str] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ScheduledJobListResponse(BaseModel):
    jobs: list[ScheduledJobResponse]
    total: int
    page: int
    page_size: int


class DeleteScheduledJobResponse(BaseModel):
    deleted: bool
    deactivated: bool


class TriggerRequest(BaseModel):
    """Optional body for POST /scheduled-jobs/{id}/trigger."""

    scheduled_for: Optional[datetime] = None


class RunOnceRequest(BaseModel):
    """Body for POST /scheduled-jobs/run-once."""

    brand_id: str = Field(..., min_length=1, max_length=64)
    customer_id: str = Field(..., min_length=1, max_length=64)
    job_type: JobType = JobType.COLLECTION
    scheduled_for: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)
    created_by: Optional[str] = None


class RetryFailuresRequest(BaseModel):
    """Body for POST /scheduled-jobs/retry-failures."""

    brand_id: str = Field(..., min_length=1, max_length=64)
    customer_id: str = Field(..., min_length=1, max_length=64)
    lookback_minutes: Optional[int] = Field(default=None, ge=1, le=60 * 24 * 30)
    engines: Optional[list[str]] = None

    @field_validator("engines")
    @classmethod
    def engines_not_empty(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is not None and not value:
            raise ValueError("engines must be omitted or non-empty")
        return value


class EnqueuedRunResponse(BaseModel):
    run_id: UUID
    status: str
    created: bool
    duplicate_count: int = 0
    scheduled_job_id: Optional[UUID] = None
