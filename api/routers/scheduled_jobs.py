"""
Scheduled job endpoints.

POST   /scheduled-jobs/                  → Create a job definition
GET    /scheduled-jobs/                  → List with filters + pagination
GET    /scheduled-jobs/{job_id}          → Get one
PATCH  /scheduled-jobs/{job_id}          → Partial update
DELETE /scheduled-jobs/{job_id}          → Delete (or deactivate when it has runs)
POST   /scheduled-jobs/{job_id}/trigger  → Queue a manual run now
POST   /scheduled-jobs/run-once          → One-off job + run, never auto-fires
POST   /scheduled-jobs/retry-failures    → Ad-hoc collection_retry run for a brand

The API layer is intentionally thin:
- Validate input (Pydantic does this automatically)
- Call the scheduling service through AsyncSession.run_sync()
- Return the response

Run-creating endpoints only write a queued run and return its id. The
scheduler engine in the worker process dispatches it.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.scheduled_job import (
    DeleteScheduledJobResponse,
    EnqueuedRunResponse,
    RetryFailuresRequest,
    RunOnceRequest,
    ScheduledJobCreate,
    ScheduledJobListResponse,
    ScheduledJobResponse,
    ScheduledJobUpdate,
    TriggerRequest,
)
from models.enums import RunTrigger
from scheduler.cron import InvalidCronExpression
from scheduler.service import (
    ScheduledJobNotFound,
    create_scheduled_job,
    delete_scheduled_job,
    enqueue_job_run,
    get_scheduled_job,
    list_scheduled_jobs,
    schedule_one_off,
    trigger_retry_failures,
    update_scheduled_job,
)

router = APIRouter(prefix="/scheduled-jobs", tags=["scheduled-jobs"])


def _not_found(job_id: UUID) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Scheduled job {job_id} not found")


@router.post("/", response_model=ScheduledJobResponse, status_code=201)
async def create_job(
    job_in: ScheduledJobCreate,
    db: AsyncSession = Depends(get_db),
) -> ScheduledJobResponse:
    """
    Store a job definition.

    next_run_at is computed right away so the admin UI can show when the
    job will first fire. Inactive jobs get no next_run_at.
    """
    try:
        job = await db.run_sync(
            create_scheduled_job,
            brand_id=job_in.brand_id,
            customer_id=job_in.customer_id,
            job_type=job_in.job_type,
            cron_expression=job_in.cron_expression,
            timezone=job_in.timezone,
            is_active=job_in.is_active,
            metadata=job_in.metadata,
            created_by=job_in.created_by,
        )
    except (InvalidCronExpression, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ScheduledJobResponse.model_validate(job)


@router.get("/", response_model=ScheduledJobListResponse)
async def list_jobs(
    customer_id: Optional[str] = Query(None),
    brand_id: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Jobs per page"),
    db: AsyncSession = Depends(get_db),
) -> ScheduledJobListResponse:
    jobs, total = await db.run_sync(
        list_scheduled_jobs,
        customer_id=customer_id,
        brand_id=brand_id,
        is_active=is_active,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return ScheduledJobListResponse(
        jobs=[ScheduledJobResponse.model_validate(j) for j in jobs],
        total=total,
        page=page,
        page_size=page_size,
    )


# Static paths are declared before /{job_id} so they are never parsed as ids


@router.post("/run-once", response_model=EnqueuedRunResponse, status_code=201)
async def run_once(
    body: RunOnceRequest,
    db: AsyncSession = Depends(get_db),
) -> EnqueuedRunResponse:
    """
    Create a disabled "@never" job marked one_off and queue a single run for it.
    """
    job, enqueued = await db.run_sync(
        schedule_one_off,
        brand_id=body.brand_id,
        customer_id=body.customer_id,
        job_type=body.job_type,
        scheduled_for=body.scheduled_for,
        metadata=body.metadata,
        created_by=body.created_by,
    )
    return EnqueuedRunResponse(
        run_id=enqueued.run_id,
        status=enqueued.status,
        created=enqueued.created,
        duplicate_count=enqueued.duplicate_count,
        scheduled_job_id=job.id,
    )


@router.post("/retry-failures", response_model=EnqueuedRunResponse, status_code=201)
async def retry_failures(
    body: RetryFailuresRequest,
    db: AsyncSession = Depends(get_db),
) -> EnqueuedRunResponse:
    """
    Queue an ad-hoc collection_retry run. Only failed results inside the
    lookback window are re-run; successes are never repeated.
    """
    enqueued = await db.run_sync(
        trigger_retry_failures,
        brand_id=body.brand_id,
        customer_id=body.customer_id,
        lookback_minutes=body.lookback_minutes,
        engines=body.engines,
    )
    return EnqueuedRunResponse(
        run_id=enqueued.run_id,
        status=enqueued.status,
        created=enqueued.created,
    )


@router.get("/{job_id}", response_model=ScheduledJobResponse)
async def get_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ScheduledJobResponse:
    try:
        job = await db.run_sync(get_scheduled_job, job_id)
    except ScheduledJobNotFound:
        raise _not_found(job_id)
    return ScheduledJobResponse.model_validate(job)


@router.patch("/{job_id}", response_model=ScheduledJobResponse)
async def update_job(
    job_id: UUID,
    changes: ScheduledJobUpdate,
    db: AsyncSession = Depends(get_db),
) -> ScheduledJobResponse:
    """Apply only the fields present in the body. Schedule changes recompute next_run_at."""
    try:
        job = await db.run_sync(
            update_scheduled_job, job_id, changes.model_dump(exclude_unset=True)
        )
    except ScheduledJobNotFound:
        raise _not_found(job_id)
    except (InvalidCronExpression, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ScheduledJobResponse.model_validate(job)


@router.delete("/{job_id}", response_model=DeleteScheduledJobResponse)
async def delete_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DeleteScheduledJobResponse:
    """
    Delete a job that never ran. A job with run history is deactivated
    instead, so old runs keep pointing at a real definition.
    """
    try:
        outcome = await db.run_sync(delete_scheduled_job, job_id)
    except ScheduledJobNotFound:
        raise _not_found(job_id)
    return DeleteScheduledJobResponse(deleted=outcome.deleted, deactivated=outcome.deactivated)


@router.post("/{job_id}/trigger", response_model=EnqueuedRunResponse, status_code=202)
async def trigger_job(
    job_id: UUID,
    body: Optional[TriggerRequest] = Body(None),
    db: AsyncSession = Depends(get_db),
) -> EnqueuedRunResponse:
    """
    Queue a manual run. Works on inactive jobs too.

    If the job already has a queued or running run, that run is returned
    (created=false) and its duplicate_count goes up.
    """
    try:
        enqueued = await db.run_sync(
            enqueue_job_run,
            job_id,
            scheduled_for=body.scheduled_for if body else None,
            trigger=RunTrigger.MANUAL,
        )
    except ScheduledJobNotFound:
        raise _not_found(job_id)
    return EnqueuedRunResponse(
        run_id=enqueued.run_id,
        status=enqueued.status,
        created=enqueued.created,
        duplicate_count=enqueued.duplicate_count,
        scheduled_job_id=job_id,
    )
