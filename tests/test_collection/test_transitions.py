"""Tests for guarded execution result transitions."""

import uuid

import pytest

from collection.transitions import (
    InvalidTransition,
    current_status,
    transition_result,
    update_running_result,
)
from models.enums import ExecutionStatus
from models.execution_result import ExecutionResult


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


def _result(session, status=ExecutionStatus.PENDING):
    row = ExecutionResult(
        id=uuid.uuid4(),
        query_id=uuid.uuid4(),
        brand_id="brand-1",
        customer_id="cust-1",
        engine="chatgpt",
        status=status.value,
        status_transitions=[],
    )
    session.add(row)
    session.commit()
    return row.id


def test_happy_path_is_audited(session):
    result_id = _result(session)

    assert transition_result(session, result_id, ExecutionStatus.RUNNING, source="engine")
    assert transition_result(
        session, result_id, ExecutionStatus.COMPLETED, source="engine",
        raw_answer="Brand X is the best", provider="p1",
    )

    row = session.get(ExecutionResult, result_id)
    session.refresh(row)
    assert row.status == "completed"
    assert row.raw_answer == "Brand X is the best"
    assert [(t["from"], t["to"]) for t in row.status_transitions] == [
        ("pending", "running"), ("running", "completed"),
    ]
    assert all(t["source"] == "engine" for t in row.status_transitions)


def test_completed_results_are_never_rewritten(session):
    result_id = _result(session, ExecutionStatus.RUNNING)
    transition_result(session, result_id, ExecutionStatus.COMPLETED, source="engine", raw_answer="first")

    assert not transition_result(session, result_id, ExecutionStatus.FAILED, source="sweep", reason="late")
    assert not transition_result(
        session, result_id, ExecutionStatus.COMPLETED, source="sweep", raw_answer="second"
    )

    row = session.get(ExecutionResult, result_id)
    session.refresh(row)
    assert row.status == "completed"
    assert row.raw_answer == "first"
    assert len(row.status_transitions) == 1


def test_failed_results_are_never_rewritten(session):
    result_id = _result(session, ExecutionStatus.RUNNING)
    transition_result(session, result_id, ExecutionStatus.FAILED, source="engine", reason="boom")

    assert not transition_result(session, result_id, ExecutionStatus.RUNNING, source="engine")
    assert current_status(session, result_id) == ExecutionStatus.FAILED


def test_pending_cannot_jump_to_completed(session):
    result_id = _result(session)
    assert not transition_result(
        session, result_id, ExecutionStatus.COMPLETED, source="engine", raw_answer="x"
    )
    assert current_status(session, result_id) == ExecutionStatus.PENDING


def test_completion_requires_an_answer(session):
    result_id = _result(session, ExecutionStatus.RUNNING)
    with pytest.raises(InvalidTransition):
        transition_result(session, result_id, ExecutionStatus.COMPLETED, source="engine", raw_answer="  ")
    assert current_status(session, result_id) == ExecutionStatus.RUNNING


def test_missing_result(session):
    assert not transition_result(session, uuid.uuid4(), ExecutionStatus.RUNNING, source="engine")
    assert current_status(session, uuid.uuid4()) is None


def test_update_running_result_only_touches_running_rows(session):
    running = _result(session, ExecutionStatus.RUNNING)
    pending = _result(session)

    assert update_running_result(session, running, provider_handle="snap-1")
    assert not update_running_result(session, pending, provider_handle="snap-2")

    row = session.get(ExecutionResult, running)
    session.refresh(row)
    assert row.provider_handle == "snap-1"
