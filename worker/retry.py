"""
Retry selection: decides which failed results a collection_retry run re-runs.

A retry never repeats work that already succeeded. A failed result is
picked when ALL of these hold:

    1. it belongs to the brand (and customer) of the retry run
    2. it was created inside the lookback window (now - lookback_minutes)
    3. it is the newest failed result for its (query, engine) pair
    4. no result has it as retry_of yet (not already re-run)
    5. no newer result for the pair completed or is still in progress
    6. its query is still active
    7. its engine is in the requested engine list, when one is given

Each pick becomes a NEW execution result with retry_of pointing at the
failed row; the failed row itself stays as history.

Lifecycle of a pair across retries:
    failed (#1) ← retry_of ─ failed (#2) ← retry_of ─ completed (#3)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.base import as_utc, utcnow
from models.enums import ExecutionStatus
from models.execution_result import ExecutionResult
from models.query import Query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryCandidate:
    result_id: uuid.UUID
    query_id: uuid.UUID
    engine: str


def select_retry_candidates(
    session: Session,
    brand_id: str,
    customer_id: str,
    lookback_minutes: int,
    engines: Optional[list[str]] = None,
    now: Optional[datetime] = None,
) -> list[RetryCandidate]:
    now = now or utcnow()
    cutoff = now - timedelta(minutes=lookback_minutes)

    rows = session.execute(
        select(
            ExecutionResult.id,
            ExecutionResult.query_id,
            ExecutionResult.engine,
            ExecutionResult.status,
            ExecutionResult.retry_of,
            ExecutionResult.created_at,
        )
        .where(
            ExecutionResult.brand_id == brand_id,
            ExecutionResult.customer_id == customer_id,
            ExecutionResult.created_at >= cutoff,
        )
        .order_by(ExecutionResult.created_at.desc())
    ).all()

    already_retried = {r.retry_of for r in rows if r.retry_of is not None}

    # rows are newest first, so the first row seen per pair decides it
    decided: dict[tuple, Optional[RetryCandidate]] = {}
    for r in rows:
        pair = (r.query_id, r.engine)
        if pair in decided:
            continue
        if r.status != ExecutionStatus.FAILED.value or r.id in already_retried:
            decided[pair] = None
            continue
        decided[pair] = RetryCandidate(result_id=r.id, query_id=r.query_id, engine=r.engine)

    candidates = [c for c in decided.values() if c is not None]
    if engines:
        candidates = [c for c in candidates if c.engine in engines]
    if not candidates:
        return []

    active_ids = set(session.execute(
        select(Query.id).where(
            Query.id.in_({c.query_id for c in candidates}),
            Query.is_active.is_(True),
        )
    ).scalars().all())

    picked = [c for c in candidates if c.query_id in active_ids]
    logger.info(
        f"Retry selection for brand {brand_id}: {len(picked)} of {len(rows)} results "
        f"since {as_utc(cutoff).isoformat()} will be re-run"
    )
    return picked
