"""Pydantic schemas for the /runs endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class JobRunResponse(BaseModel):
    id: UUID
    scheduled_job_id: Optional[UUID] = None
    brand_id: str
    customer_id: str
    job_type: str
    trigger: str
    status: str
    stage: Optional[str] = None
    slot_key: Optional[str] = None
    duplicate_count: int
    queries_total: int
    queries_succeeded: int
    queries_failed: int
    results_in_flight: int
    error_message: Optional[str] = None
    stage_errors: list = Field(default_factory=list)
    metrics: dict = Field(default_factory=dict)
    metadata: dict = Field(default_factory=dict, validation_alias=AliasChoices("run_metadata", "metadata"))
    created_at: datetime
    scheduled_for: datetime
    dispatched_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class JobRunListResponse(BaseModel):
    runs: list[JobRunResponse]
    total: int
    page: int
    page_size: int


class RunStats(BaseModel):
    """Aggregate run statistics, returned by GET /runs/stats."""

    total_runs: int
    queued: int
    running: int
    completed: int
    completed_with_errors: int
    failed: int
    duplicate_enqueues: int
    avg_execution_time_ms: Optional[float] = None


class ExecutionResultResponse(BaseModel):
    id: UUID
    job_run_id: Optional[UUID] = None
    query_id: UUID
    engine: str
    status: str
    provider: Optional[str] = None
    provider_handle: Optional[str] = None
    raw_answer: Optional[str] = None
    citations: list = Field(default_factory=list)
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: list = Field(default_factory=list)
    fallback_count: int
    retry_of: Optional[UUID] = None
    status_transitions: list = Field(default_factory=list)
    scoring_status: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ExecutionResultListResponse(BaseModel):
    results: list[ExecutionResultResponse]
    total: int
    page: int
    page_size: int
