"""
ExecutionResult ORM model: one query against one answer engine.

This is the atomic unit of collection work and the unit of targeted retry.
Rows are append-only per attempt: re-running a (query, engine) pair inserts
a new row (retry_of points at the failed row it replaces) instead of
rewriting history.

Lifecycle:
    pending → running → completed | failed

status_transitions keeps an audit entry per transition:
    {"from": "running", "to": "completed", "at": "...", "source": "engine"}

attempts keeps one entry per provider tried, in order:
    [{"provider": "a", "outcome": "transient", "error": "..."},
     {"provider": "b", "outcome": "completed"}]
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, utcnow
from models.enums import ExecutionStatus


class ExecutionResult(Base):
    __tablename__ = "execution_results"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_run_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("job_runs.id"), nullable=True, index=True
    )
    query_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    brand_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    engine: Mapped[str] = mapped_column(String(40), nullable=False)
    retry_of: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # ── State ───────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=ExecutionStatus.PENDING.value, nullable=False, index=True
    )
    provider: Mapped[str | None] = mapped_column(String(80), nullable=True)
    provider_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Payload ─────────────────────────────────────────────────
    raw_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    citations: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # ── Failure detail ──────────────────────────────────────────
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    attempts: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    fallback_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status_transitions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # ── Owned by the scoring collaborator ───────────────────────
    scoring_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # ── Timestamps ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<ExecutionResult {self.id} {self.engine} {self.status}>"
