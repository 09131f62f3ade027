"""
JobRun ORM model: one concrete execution of a ScheduledJob (or an ad-hoc trigger).

Lifecycle (monotonic, never reverts):
    queued → running → completed | completed_with_errors | failed
    queued → failed   (errored before any execution result started)

Every move out of queued/running is a conditional UPDATE on the status
column (see worker/executor.py), so two workers can never both own a run.

Dedup: runs created by the cron tick carry slot_key = "<job id>@<slot>".
The (scheduled_job_id, slot_key) pair is unique, so a second scheduler
process evaluating the same slot hits the constraint instead of creating a
twin. The loser bumps duplicate_count on the winner, which keeps duplicate
attempts visible in run history.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, utcnow
from models.enums import RunStatus


class JobRun(Base):
    __tablename__ = "job_runs"
    __table_args__ = (
        UniqueConstraint("scheduled_job_id", "slot_key", name="uq_job_runs_slot"),
    )

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scheduled_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("scheduled_jobs.id"), nullable=True, index=True
    )
    brand_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_type: Mapped[str] = mapped_column(String(40), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)

    # ── State ───────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(30), default=RunStatus.QUEUED.value, nullable=False, index=True
    )
    stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    slot_key: Mapped[str | None] = mapped_column(String(120), nullable=True)
    duplicate_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── Summary counters (one per query × engine pair) ──────────
    queries_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    queries_succeeded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    queries_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    results_in_flight: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # ── Outcome detail ──────────────────────────────────────────
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"stage": "scoring", "error": "..."}]
    stage_errors: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    # {"collection": {...}, "scoring": {...}}
    metrics: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    # copy of the job metadata at enqueue time (or ad-hoc parameters)
    run_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    # ── Lifecycle timestamps ────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<JobRun {self.id} [{self.job_type}] {self.status}>"
