"""
Run history endpoints.

GET  /runs/                    → List runs with filtering + pagination
GET  /runs/stats               → Aggregate statistics per status
GET  /runs/{run_id}            → Get one run
GET  /runs/{run_id}/results    → The run's per-query-per-engine results
POST /runs/{run_id}/redispatch → Push a queued run to workers again
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.run import (
    ExecutionResultListResponse,
    ExecutionResultResponse,
    JobRunListResponse,
    JobRunResponse,
    RunStats,
)
from models.enums import ExecutionStatus, RunStatus
from models.execution_result import ExecutionResult
from models.job_run import JobRun

router = APIRouter(prefix="/runs", tags=["runs"])


async def _get_run_or_404(db: AsyncSession, run_id: UUID) -> JobRun:
    result = await db.execute(select(JobRun).where(JobRun.id == run_id))
    run = result.scalar_one_or_none()
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run


@router.get("/", response_model=JobRunListResponse)
async def list_runs(
    status: Optional[RunStatus] = Query(None, description="Filter by run status"),
    brand_id: Optional[str] = Query(None),
    scheduled_job_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Runs per page"),
    db: AsyncSession = Depends(get_db),
) -> JobRunListResponse:
    """
    List runs, newest first.

    Two queries: one COUNT for the total, one for the page of rows.
    """
    conditions = []
    if status:
        conditions.append(JobRun.status == status.value)
    if brand_id:
        conditions.append(JobRun.brand_id == brand_id)
    if scheduled_job_id:
        conditions.append(JobRun.scheduled_job_id == scheduled_job_id)

    total = (await db.execute(select(func.count(JobRun.id)).where(*conditions))).scalar() or 0

    offset = (page - 1) * page_size
    query = (
        select(JobRun)
        .where(*conditions)
        .order_by(JobRun.created_at.desc())
        .offset(offset)
        .limit(page_size)
    )
    runs = (await db.execute(query)).scalars().all()

    return JobRunListResponse(
        runs=[JobRunResponse.model_validate(r) for r in runs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=RunStats)
async def get_run_stats(
    brand_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> RunStats:
    """
    Counts per status in one query, using conditional aggregation
    (COUNT ... FILTER) instead of one COUNT per status.
    """
    conditions = [JobRun.brand_id == brand_id] if brand_id else []
    query = select(
        func.count(JobRun.id).label("total"),
        func.count(JobRun.id).filter(JobRun.status == RunStatus.QUEUED.value).label("queued"),
        func.count(JobRun.id).filter(JobRun.status == RunStatus.RUNNING.value).label("running"),
        func.count(JobRun.id).filter(JobRun.status == RunStatus.COMPLETED.value).label("completed"),
        func.count(JobRun.id).filter(
            JobRun.status == RunStatus.COMPLETED_WITH_ERRORS.value
        ).label("completed_with_errors"),
        func.count(JobRun.id).filter(JobRun.status == RunStatus.FAILED.value).label("failed"),
        func.coalesce(func.sum(JobRun.duplicate_count), 0).label("duplicates"),
    ).where(*conditions)
    row = (await db.execute(query)).one()

    # Average wall time of finished runs, from the executor's own measurement
    finished = (await db.execute(
        select(JobRun.metrics).where(
            *conditions,
            JobRun.finished_at.is_not(None),
            JobRun.status != RunStatus.QUEUED.value,
        ).order_by(JobRun.finished_at.desc()).limit(500)
    )).scalars().all()
    durations = [m["execution_time_sec"] for m in finished if m and "execution_time_sec" in m]
    avg_ms = round(sum(durations) / len(durations) * 1000, 2) if durations else None

    return RunStats(
        total_runs=row.total,
        queued=row.queued,
        running=row.running,
        completed=row.completed,
        completed_with_errors=row.completed_with_errors,
        failed=row.failed,
        duplicate_enqueues=row.duplicates,
        avg_execution_time_ms=avg_ms,
    )


@router.get("/{run_id}", response_model=JobRunResponse)
async def get_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> JobRunResponse:
    return JobRunResponse.model_validate(await _get_run_or_404(db, run_id))


@router.get("/{run_id}/results", response_model=ExecutionResultListResponse)
async def list_run_results(
    run_id: UUID,
    status: Optional[ExecutionStatus] = Query(None),
    engine: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> ExecutionResultListResponse:
    await _get_run_or_404(db, run_id)

    conditions = [ExecutionResult.job_run_id == run_id]
    if status:
        conditions.append(ExecutionResult.status == status.value)
    if engine:
        conditions.append(ExecutionResult.engine == engine)

    total = (await db.execute(select(func.count(ExecutionResult.id)).where(*conditions))).scalar() or 0
    rows = (await db.execute(
        select(ExecutionResult)
        .where(*conditions)
        .order_by(ExecutionResult.created_at, ExecutionResult.engine)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )).scalars().all()

    return ExecutionResultListResponse(
        results=[ExecutionResultResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{run_id}/redispatch", response_model=JobRunResponse)
async def redispatch_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> JobRunResponse:
    """
    Clear dispatched_at on a queued run so the scheduler pushes it again.

    Only queued runs qualify: a running or finished run is never sent to
    a worker twice.
    """
    run = await _get_run_or_404(db, run_id)
    cleared = await db.execute(
        update(JobRun)
        .where(JobRun.id == run_id, JobRun.status == RunStatus.QUEUED.value)
        .values(dispatched_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if cleared.rowcount != 1:
        raise HTTPException(
            status_code=409,
            detail=f"Run {run_id} is {run.status}. Only queued runs can be redispatched.",
        )
    await db.refresh(run)
    return JobRunResponse.model_validate(run)
