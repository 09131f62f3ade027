"""
ScheduledJob ORM model: maps to the "scheduled_jobs" table.

A scheduled job is a recurring (or one-off) unit of work for one brand:
collect answers, score them, or both. Key design decisions:
- cron_expression holds five/six-field cron, or the "@never" sentinel for
  one-off jobs that must never auto-fire
- is_active=False stops auto-firing but a manual trigger still works
- metadata is free-form JSON: engines to collect from, locale/country,
  lookback_minutes for retry jobs, one_off marker
- next_run_at / last_run_at are bookkeeping for the admin UI and for
  scoring's "since" window; due-ness is always recomputed from the cron
- jobs referenced by runs are deactivated instead of deleted
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, utcnow


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(40), nullable=False)

    # ── Schedule ────────────────────────────────────────────────
    cron_expression: Mapped[str] = mapped_column(String(120), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # ── Free-form settings ──────────────────────────────────────
    # {"engines": ["chatgpt", "claude"], "locale": "en-US", "lookback_minutes": 60}
    job_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # ── Timestamps ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<ScheduledJob {self.id} [{self.job_type}] {self.cron_expression!r}>"
