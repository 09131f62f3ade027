"""
Scheduling service: scheduled job CRUD and turning jobs into runs.

Every function takes a SYNC Session:
- the worker (scheduler tick) calls them directly with SyncSessionLocal()
- the API calls them through AsyncSession.run_sync(), e.g.
      await db.run_sync(create_scheduled_job, brand_id=..., ...)

so the rules live in exactly one place.

Dedup strategy for runs:
    Scheduler-triggered runs carry slot_key = "<job id>@<slot in UTC ISO>",
    where the slot is the fire time truncated to the cron's resolution
    (minute for 5 fields, second for 6). (scheduled_job_id, slot_key) is
    unique in the database, so two scheduler processes racing on the same
    slot produce ONE run. The second attempt returns the existing run and
    bumps its duplicate_count.

    Manual triggers have no slot. A manual trigger for a job that already
    has a queued or running run returns that run (duplicate_count + 1)
    instead of stacking a second one behind it.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import as_utc, utcnow
from models.enums import JobType, RunStatus, RunTrigger
from models.job_run import JobRun
from models.scheduled_job import ScheduledJob
from scheduler.cron import NEVER, CronSchedule

logger = logging.getLogger(__name__)


class ScheduledJobNotFound(LookupError):
    pass


class JobRunNotFound(LookupError):
    pass


@dataclass(frozen=True)
class EnqueuedRun:
    run_id: uuid.UUID
    status: str
    created: bool          # False when an existing run was returned instead
    duplicate_count: int = 0


@dataclass(frozen=True)
class DeleteOutcome:
    deleted: bool
    deactivated: bool


@dataclass(frozen=True)
class DueJob:
    job_id: uuid.UUID
    slot: datetime


def make_slot_key(job_id: uuid.UUID, slot: datetime) -> str:
    return f"{job_id}@{slot.isoformat()}"


def _next_run_at(job: ScheduledJob, after: datetime) -> Optional[datetime]:
    if not job.is_active:
        return None
    return CronSchedule.parse(job.cron_expression, job.timezone).next_after(after)


# ── Job CRUD ────────────────────────────────────────────────────


def create_scheduled_job(
    session: Session,
    brand_id: str,
    customer_id: str,
    job_type: JobType | str,
    cron_expression: str,
    timezone: str = "UTC",
    is_active: bool = True,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScheduledJob:
    """
    Validate and store a job definition.

    Raises InvalidCronExpression / ValueError before anything is written.
    """
    job_type = JobType(job_type)
    CronSchedule.parse(cron_expression, timezone)

    job = ScheduledJob(
        id=uuid.uuid4(),
        brand_id=brand_id,
        customer_id=customer_id,
        job_type=job_type.value,
        cron_expression=cron_expression.strip(),
        timezone=timezone,
        is_active=is_active,
        job_metadata=dict(metadata or {}),
        created_by=created_by,
    )
    job.next_run_at = _next_run_at(job, now or utcnow())
    session.add(job)
    session.commit()

    logger.info(f"Scheduled job {job.id} created [{job.job_type}] {job.cron_expression!r} {job.timezone}")
    return job


def get_scheduled_job(session: Session, job_id: uuid.UUID) -> ScheduledJob:
    job = session.get(ScheduledJob, job_id)
    if job is None:
        raise ScheduledJobNotFound(f"Scheduled job {job_id} not found")
    return job


def list_scheduled_jobs(
    session: Session,
    customer_id: Optional[str] = None,
    brand_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[ScheduledJob], int]:
    conditions = []
    if customer_id:
        conditions.append(ScheduledJob.customer_id == customer_id)
    if brand_id:
        conditions.append(ScheduledJob.brand_id == brand_id)
    if is_active is not None:
        conditions.append(ScheduledJob.is_active.is_(is_active))

    total = session.execute(
        select(func.count(ScheduledJob.id)).where(*conditions)
    ).scalar() or 0
    jobs = session.execute(
        select(ScheduledJob)
        .where(*conditions)
        .order_by(ScheduledJob.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(jobs), total


_UPDATABLE = {"cron_expression", "timezone", "is_active", "metadata", "job_type", "created_by"}
_NOT_NULLABLE = {"cron_expression", "timezone", "is_active", "job_type"}


def update_scheduled_job(
    session: Session,
    job_id: uuid.UUID,
    changes: dict,
    now: Optional[datetime] = None,
) -> ScheduledJob:
    """Apply a partial update. Schedule fields are validated together before writing."""
    unknown = set(changes) - _UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")
    nulled = sorted(f for f in _NOT_NULLABLE if f in changes and changes[f] is None)
    if nulled:
        raise ValueError(f"Fields cannot be null: {nulled}")

    job = get_scheduled_job(session, job_id)
    cron_expression = changes.get("cron_expression", job.cron_expression)
    tz_name = changes.get("timezone", job.timezone)
    if "cron_expression" in changes or "timezone" in changes:
        CronSchedule.parse(cron_expression, tz_name)
    if "job_type" in changes:
        job.job_type = JobType(changes["job_type"]).value

    job.cron_expression = cron_expression.strip()
    job.timezone = tz_name
    if "is_active" in changes:
        job.is_active = bool(changes["is_active"])
    if "metadata" in changes:
        job.job_metadata = dict(changes["metadata"] or {})
    if "created_by" in changes:
        job.created_by = changes["created_by"]

    if {"cron_expression", "timezone", "is_active"} & set(changes):
        job.next_run_at = _next_run_at(job, now or utcnow())
    session.commit()

    logger.info(f"Scheduled job {job.id} updated: {sorted(changes)}")
    return job


def delete_scheduled_job(session: Session, job_id: uuid.UUID) -> DeleteOutcome:
    """
    Hard delete when no run references the job; otherwise deactivate it so
    run history keeps pointing at a real row.
    """
    job = get_scheduled_job(session, job_id)
    run_count = session.execute(
        select(func.count(JobRun.id)).where(JobRun.scheduled_job_id == job.id)
    ).scalar() or 0

    if run_count == 0:
        session.delete(job)
        session.commit()
        logger.info(f"Scheduled job {job_id} deleted")
        return DeleteOutcome(deleted=True, deactivated=False)

    job.is_active = False
    job.next_run_at = None
    session.commit()
    logger.info(f"Scheduled job {job_id} has {run_count} runs, deactivated instead of deleted")
    return DeleteOutcome(deleted=False, deactivated=True)


# ── Due evaluation ──────────────────────────────────────────────


def list_due_jobs(
    session: Session,
    now: Optional[datetime] = None,
    since: Optional[datetime] = None,
    page_size: Optional[int] = None,
) -> list[DueJob]:
    """
    Active jobs whose cron fires in the slot containing `now`, minus jobs
    that already have a run for that slot.

    When `since` (the previous tick) is given, a slot that fired between the
    two ticks also counts, so a six-field schedule is not skipped by a slow
    tick. Several missed slots coalesce into the latest one.

    Every active job is evaluated on every call. Jobs are read in pages
    of `page_size`, keyed on id, so a page boundary never skips a job.
    """
    now = now or utcnow()
    page_size = page_size or settings.SCHEDULER_DUE_BATCH
    due: list[DueJob] = []
    last_id: Optional[uuid.UUID] = None
    while True:
        query = (
            select(ScheduledJob)
            .where(ScheduledJob.is_active.is_(True), ScheduledJob.cron_expression != NEVER)
            .order_by(ScheduledJob.id)
            .limit(page_size)
        )
        if last_id is not None:
            query = query.where(ScheduledJob.id > last_id)
        jobs = session.execute(query).scalars().all()
        due.extend(_due_in_page(session, jobs, now, since))
        if len(jobs) < page_size:
            return due
        last_id = jobs[-1].id


def _due_in_page(
    session: Session,
    jobs: list[ScheduledJob],
    now: datetime,
    since: Optional[datetime],
) -> list[DueJob]:
    candidates: list[DueJob] = []
    for job in jobs:
        try:
            schedule = CronSchedule.parse(job.cron_expression, job.timezone)
        except ValueError as e:
            logger.error(f"Scheduled job {job.id} has an unusable schedule, skipping: {e}")
            continue

        slot = _due_slot(schedule, now, since)
        if slot is not None:
            candidates.append(DueJob(job_id=job.id, slot=slot))

    if not candidates:
        return []

    keys = {make_slot_key(c.job_id, c.slot): c for c in candidates}
    taken = set(session.execute(
        select(JobRun.slot_key).where(JobRun.slot_key.in_(list(keys)))
    ).scalars().all())
    return [c for key, c in keys.items() if key not in taken]


def _due_slot(schedule: CronSchedule, now: datetime, since: Optional[datetime]) -> Optional[datetime]:
    if schedule.matches(now):
        return schedule.slot_for(now)
    if since is None:
        return None

    current = schedule.slot_for(now)
    latest = None
    cursor = schedule.slot_for(since)
    for _ in range(1000):
        fire = schedule.next_after(cursor)
        if fire is None or fire > current:
            break
        latest = cursor = fire
    return latest


# ── Runs ────────────────────────────────────────────────────────


def get_job_run(session: Session, run_id: uuid.UUID) -> JobRun:
    run = session.get(JobRun, run_id)
    if run is None:
        raise JobRunNotFound(f"Run {run_id} not found")
    return run


def _mark_duplicate(session: Session, run_id: uuid.UUID, reason: str) -> EnqueuedRun:
    session.execute(
        update(JobRun)
        .where(JobRun.id == run_id)
        .values(duplicate_count=JobRun.duplicate_count + 1)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    status, duplicates = session.execute(
        select(JobRun.status, JobRun.duplicate_count).where(JobRun.id == run_id)
    ).one()
    logger.warning(f"Duplicate enqueue for run {run_id} ({reason}), seen {duplicates} times")
    return EnqueuedRun(run_id=run_id, status=status, created=False, duplicate_count=duplicates)


def enqueue_job_run(
    session: Session,
    job_id: uuid.UUID,
    scheduled_for: Optional[datetime] = None,
    trigger: RunTrigger = RunTrigger.MANUAL,
    now: Optional[datetime] = None,
) -> EnqueuedRun:
    """
    Create a queued run for a scheduled job.

    Works on inactive jobs too: inactive only stops auto-firing.
    """
    trigger = RunTrigger(trigger)
    job = get_scheduled_job(session, job_id)
    now = now or utcnow()
    scheduled_for = as_utc(scheduled_for) or now

    slot_key = None
    if trigger == RunTrigger.SCHEDULER:
        schedule = CronSchedule.parse(job.cron_expression, job.timezone)
        scheduled_for = schedule.slot_for(scheduled_for)
        slot_key = make_slot_key(job.id, scheduled_for)
        existing = session.execute(
            select(JobRun.id).where(JobRun.scheduled_job_id == job.id, JobRun.slot_key == slot_key)
        ).scalar_one_or_none()
        if existing is not None:
            return _mark_duplicate(session, existing, f"slot {slot_key}")
    elif trigger == RunTrigger.MANUAL:
        active = session.execute(
            select(JobRun.id)
            .where(
                JobRun.scheduled_job_id == job.id,
                JobRun.status.in_([RunStatus.QUEUED.value, RunStatus.RUNNING.value]),
            )
            .order_by(JobRun.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if active is not None:
            return _mark_duplicate(session, active, "job already has an active run")

    run = JobRun(
        id=uuid.uuid4(),
        scheduled_job_id=job.id,
        brand_id=job.brand_id,
        customer_id=job.customer_id,
        job_type=job.job_type,
        trigger=trigger.value,
        status=RunStatus.QUEUED.value,
        slot_key=slot_key,
        scheduled_for=scheduled_for,
        run_metadata=dict(job.job_metadata or {}),
    )
    session.add(run)
    job.last_run_at = scheduled_for
    job.next_run_at = _next_run_at(job, max(scheduled_for, now))

    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        if slot_key is None:
            raise
        # another scheduler process won the slot between our check and insert
        existing = session.execute(
            select(JobRun.id).where(JobRun.scheduled_job_id == job_id, JobRun.slot_key == slot_key)
        ).scalar_one()
        return _mark_duplicate(session, existing, f"slot {slot_key}")

    logger.info(f"Run {run.id} queued for job {job.id} [{job.job_type}] trigger={trigger.value}")
    return EnqueuedRun(run_id=run.id, status=run.status, created=True)


def enqueue_adhoc_run(
    session: Session,
    brand_id: str,
    customer_id: str,
    job_type: JobType | str,
    metadata: Optional[dict] = None,
    trigger: RunTrigger = RunTrigger.RETRY,
    scheduled_for: Optional[datetime] = None,
) -> EnqueuedRun:
    """Create a queued run that has no parent scheduled job."""
    job_type = JobType(job_type)
    run = JobRun(
        id=uuid.uuid4(),
        scheduled_job_id=None,
        brand_id=brand_id,
        customer_id=customer_id,
        job_type=job_type.value,
        trigger=RunTrigger(trigger).value,
        status=RunStatus.QUEUED.value,
        scheduled_for=as_utc(scheduled_for) or utcnow(),
        run_metadata=dict(metadata or {}),
    )
    session.add(run)
    session.commit()
    logger.info(f"Ad-hoc run {run.id} queued [{job_type.value}] for brand {brand_id}")
    return EnqueuedRun(run_id=run.id, status=run.status, created=True)


def schedule_one_off(
    session: Session,
    brand_id: str,
    customer_id: str,
    job_type: JobType | str,
    scheduled_for: Optional[datetime] = None,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
) -> tuple[ScheduledJob, EnqueuedRun]:
    """
    Create a disabled job that never auto-fires, plus one run for it.

    The job row exists so the run shows up in the job's history like any other.
    """
    job = create_scheduled_job(
        session,
        brand_id=brand_id,
        customer_id=customer_id,
        job_type=job_type,
        cron_expression=NEVER,
        is_active=False,
        metadata={**(metadata or {}), "one_off": True},
        created_by=created_by,
    )
    enqueued = enqueue_job_run(session, job.id, scheduled_for=scheduled_for, trigger=RunTrigger.ONE_OFF)
    return job, enqueued


def trigger_retry_failures(
    session: Session,
    brand_id: str,
    customer_id: str,
    lookback_minutes: Optional[int] = None,
    engines: Optional[list[str]] = None,
) -> EnqueuedRun:
    """Queue an ad-hoc collection_retry run for one brand."""
    metadata: dict = {"lookback_minutes": lookback_minutes or settings.MANUAL_RETRY_LOOKBACK_MINUTES}
    if engines:
        metadata["engines"] = list(engines)
    return enqueue_adhoc_run(
        session,
        brand_id=brand_id,
        customer_id=customer_id,
        job_type=JobType.COLLECTION_RETRY,
        metadata=metadata,
        trigger=RunTrigger.RETRY,
    )
