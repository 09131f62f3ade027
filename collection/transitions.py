"""
State-guarded ExecutionResult transitions.

Three writers touch execution results concurrently: the execution engine's
threads, the async-result sweep, and (for status reads) the scoring side.
Instead of locks, every status change is a conditional UPDATE:

    UPDATE execution_results
       SET status = :to, status_transitions = :audit, ...
     WHERE id = :id AND status = :observed

If another writer moved the row first, the UPDATE matches nothing and the
caller learns it lost. Terminal rows (completed, failed) are never a valid
`from` state, so they are never rewritten.

Allowed moves:
    pending → running
    pending → failed       (engine gave up before calling a provider)
    running → completed    (requires a non-empty raw_answer)
    running → failed
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.base import utcnow
from models.enums import ExecutionStatus
from models.execution_result import ExecutionResult

logger = logging.getLogger(__name__)

_ALLOWED = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.FAILED},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
}


class InvalidTransition(Exception):
    pass


def transition_result(
    session: Session,
    result_id: uuid.UUID,
    to_status: ExecutionStatus,
    source: str,
    reason: Optional[str] = None,
    **fields: Any,
) -> bool:
    """
    Move one result to `to_status` if its current state allows it.

    Commits on success. Returns False (and writes nothing) when the row is
    missing, already terminal, or was moved by someone else in between.
    """
    if to_status == ExecutionStatus.COMPLETED and not str(fields.get("raw_answer") or "").strip():
        raise InvalidTransition(f"Result {result_id} cannot complete without a raw answer")

    row = session.execute(
        select(ExecutionResult.status, ExecutionResult.status_transitions)
        .where(ExecutionResult.id == result_id)
    ).one_or_none()
    if row is None:
        logger.warning(f"Result {result_id} not found, cannot move it to {to_status.value}")
        return False

    current = ExecutionStatus(row.status)
    if to_status not in _ALLOWED.get(current, set()):
        logger.info(f"Result {result_id} is {current.value}, ignoring {source} move to {to_status.value}")
        return False

    entry = {"from": current.value, "to": to_status.value, "at": utcnow().isoformat(), "source": source}
    if reason:
        entry["reason"] = reason[:500]

    outcome = session.execute(
        update(ExecutionResult)
        .where(ExecutionResult.id == result_id, ExecutionResult.status == current.value)
        .values(
            status=to_status.value,
            status_transitions=[*(row.status_transitions or []), entry],
            updated_at=utcnow(),
            **fields,
        )
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount != 1:
        session.rollback()
        logger.info(f"Result {result_id} moved by another writer before {source} could set {to_status.value}")
        return False

    session.commit()
    return True


def update_running_result(session: Session, result_id: uuid.UUID, **fields: Any) -> bool:
    """Write fields onto a result that is still running, without changing its status."""
    outcome = session.execute(
        update(ExecutionResult)
        .where(ExecutionResult.id == result_id, ExecutionResult.status == ExecutionStatus.RUNNING.value)
        .values(updated_at=utcnow(), **fields)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return outcome.rowcount == 1


def current_status(session: Session, result_id: uuid.UUID) -> Optional[ExecutionStatus]:
    status = session.execute(
        select(ExecutionResult.status).where(ExecutionResult.id == result_id)
    ).scalar_one_or_none()
    return ExecutionStatus(status) if status else None
