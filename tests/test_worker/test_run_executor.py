"""
Tests for the RunExecutor: claim, dispatch, finish.

Runs are created through the scheduling service exactly as the API does,
then executed the way a worker thread would after popping the id.
"""

import uuid

from collection.chain import CollectorChain
from collection.engine import ExecutionEngine
from collection.queries import SqlQueryStore
from conftest import ScriptedProvider, add_queries, provider_lookup
from models.enums import JobType, RunStatus, Stage
from models.job_run import JobRun
from scheduler.service import enqueue_adhoc_run
from worker.dispatcher import JobTypeDispatcher, RunOutcome
from worker.executor import RunExecutor
from worker.scoring import ScoringError, ScoringResult


class FakeScoring:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def score_brand(self, brand_id, customer_id, since):
        self.calls += 1
        if self.fail:
            raise ScoringError("scoring timed out")
        return ScoringResult(positions_processed=1, sentiments_processed=1)


def _executor(session_factory, redis, provider, scoring=None):
    chain = CollectorChain(redis, session_factory)
    chain.update_collector_config("chatgpt", [{"name": provider.provider_name}], max_concurrency=2)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(provider))
    dispatcher = JobTypeDispatcher(engine, SqlQueryStore(session_factory), scoring or FakeScoring(), session_factory)
    return RunExecutor(session_factory, dispatcher)


def _queue_run(session_factory, job_type=JobType.COLLECTION, metadata=None):
    session = session_factory()
    try:
        return enqueue_adhoc_run(
            session, "brand-1", "cust-1", job_type,
            metadata=metadata if metadata is not None else {"engines": ["chatgpt"]},
        ).run_id
    finally:
        session.close()


def _run(session_factory, run_id):
    session = session_factory()
    try:
        return session.get(JobRun, run_id)
    finally:
        session.close()


def test_successful_collection_run(session_factory, sync_redis):
    add_queries(session_factory, 3)
    run_id = _queue_run(session_factory)

    result = _executor(session_factory, sync_redis, ScriptedProvider("gpt")).execute(run_id)

    assert result == {"status": "completed", "run_id": str(run_id)}
    run = _run(session_factory, run_id)
    assert run.status == RunStatus.COMPLETED.value
    assert (run.queries_total, run.queries_succeeded, run.queries_failed) == (3, 3, 0)
    assert run.started_at is not None and run.finished_at is not None
    assert run.stage == "collection"
    assert "execution_time_sec" in run.metrics
    assert run.metrics["collection"]["succeeded"] == 3


def test_partial_failure_is_completed_with_errors(session_factory, sync_redis):
    add_queries(session_factory, 5)
    run_id = _queue_run(session_factory)
    provider = ScriptedProvider("gpt", script={"best running shoes 1": "hard", "best running shoes 3": "hard"})

    _executor(session_factory, sync_redis, provider).execute(run_id)

    run = _run(session_factory, run_id)
    assert run.status == RunStatus.COMPLETED_WITH_ERRORS.value
    assert (run.queries_total, run.queries_succeeded, run.queries_failed) == (5, 3, 2)


def test_run_is_claimed_once(session_factory, sync_redis):
    add_queries(session_factory, 1)
    run_id = _queue_run(session_factory)
    provider = ScriptedProvider("gpt")
    executor = _executor(session_factory, sync_redis, provider)

    first = executor.execute(run_id)
    second = executor.execute(str(run_id))

    assert first["status"] == "completed"
    assert second["status"] == "skipped"
    assert len(provider.calls) == 1


def test_unknown_run_is_skipped(session_factory, sync_redis):
    executor = _executor(session_factory, sync_redis, ScriptedProvider("gpt"))
    assert executor.execute(uuid.uuid4())["status"] == "skipped"


def test_scoring_failure_leaves_run_completed_with_errors(session_factory, sync_redis):
    add_queries(session_factory, 2)
    run_id = _queue_run(session_factory, JobType.COLLECTION_AND_SCORING)

    _executor(session_factory, sync_redis, ScriptedProvider("gpt"), FakeScoring(fail=True)).execute(run_id)

    run = _run(session_factory, run_id)
    assert run.status == RunStatus.COMPLETED_WITH_ERRORS.value
    assert run.queries_succeeded == 2
    assert run.stage == "scoring"
    assert run.stage_errors == [{"stage": "scoring", "error": "scoring timed out"}]


def test_all_failed_collection_fails_the_run_without_scoring(session_factory, sync_redis):
    add_queries(session_factory, 2)
    run_id = _queue_run(session_factory, JobType.COLLECTION_AND_SCORING)
    scoring = FakeScoring()

    _executor(session_factory, sync_redis, ScriptedProvider("gpt", default="hard"), scoring).execute(run_id)

    run = _run(session_factory, run_id)
    assert run.status == RunStatus.FAILED.value
    assert scoring.calls == 0
    assert run.queries_failed == 2


def test_unexpected_dispatch_error_fails_the_run(session_factory, sync_redis):
    run_id = _queue_run(session_factory)
    executor = _executor(session_factory, sync_redis, ScriptedProvider("gpt"))

    def explode(ctx):
        raise RuntimeError("query store unreachable")

    executor._dispatcher.dispatch = explode
    executor.execute(run_id)

    run = _run(session_factory, run_id)
    assert run.status == RunStatus.FAILED.value
    assert run.error_message == "query store unreachable"
    assert run.stage_errors == [{"stage": "setup", "error": "query store unreachable"}]


def test_finished_run_is_never_rewritten(session_factory, sync_redis):
    add_queries(session_factory, 1)
    run_id = _queue_run(session_factory)
    executor = _executor(session_factory, sync_redis, ScriptedProvider("gpt"))
    executor.execute(run_id)

    rewritten = executor._finish(run_id, RunOutcome(status=RunStatus.FAILED, stage=Stage.SETUP), 0.1)

    assert rewritten is False
    assert _run(session_factory, run_id).status == RunStatus.COMPLETED.value


def test_bad_run_metadata_fails_the_run_in_setup(session_factory, sync_redis):
    add_queries(session_factory, 1)
    run_id = _queue_run(session_factory, metadata={"engines": ["chatgpt"], "since": "yesterday"})
    provider = ScriptedProvider("gpt")

    result = _executor(session_factory, sync_redis, provider).execute(run_id)

    assert result == {"status": "failed", "run_id": str(run_id)}
    assert provider.calls == []
    run = _run(session_factory, run_id)
    assert run.status == RunStatus.FAILED.value
    assert run.finished_at is not None
    assert run.stage == "setup"
    assert run.stage_errors[0]["stage"] == "setup"
    assert "yesterday" in run.error_message
