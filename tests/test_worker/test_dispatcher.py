"""
Tests for the job type dispatcher: status from a collection summary and
stage gating between collection and scoring.
"""

import pytest

from collection.chain import CollectorChain
from collection.engine import CollectionSummary, ExecutionEngine
from collection.queries import SqlQueryStore
from conftest import ScriptedProvider, add_queries, provider_lookup
from models.enums import JobType, RunStatus, Stage
from worker.dispatcher import HANDLERS, JobTypeDispatcher, RunContext, status_from_summary
from worker.scoring import ScoringError, ScoringResult


class FakeScoring:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def score_brand(self, brand_id, customer_id, since):
        self.calls.append((brand_id, customer_id, since))
        if self.fail:
            raise ScoringError("scoring service returned 502")
        return ScoringResult(positions_processed=4, sentiments_processed=4)


def _dispatcher(session_factory, redis, provider, scoring):
    chain = CollectorChain(redis, session_factory)
    chain.update_collector_config("chatgpt", [{"name": provider.provider_name}], max_concurrency=2)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(provider))
    return JobTypeDispatcher(engine, SqlQueryStore(session_factory), scoring, session_factory)


def _ctx(job_type, metadata=None):
    return RunContext(
        run_id=None,
        brand_id="brand-1",
        customer_id="cust-1",
        job_type=job_type,
        metadata=metadata if metadata is not None else {"engines": ["chatgpt"]},
    )


@pytest.mark.parametrize("total, succeeded, failed, expected", [
    (5, 5, 0, RunStatus.COMPLETED),
    (0, 0, 0, RunStatus.COMPLETED),
    (5, 3, 2, RunStatus.COMPLETED_WITH_ERRORS),
    (5, 0, 5, RunStatus.FAILED),
    (5, 2, 0, RunStatus.COMPLETED),  # three still in flight
    (3, 0, 2, RunStatus.FAILED),  # nothing succeeded, one still in flight
])
def test_status_from_summary(total, succeeded, failed, expected):
    summary = CollectionSummary(total=total, succeeded=succeeded, failed=failed, in_flight=total - succeeded - failed)
    assert status_from_summary(summary) == expected


def test_every_job_type_has_a_handler():
    assert set(HANDLERS) == set(JobType)


def test_collection_uses_active_queries_only(session_factory, sync_redis):
    add_queries(session_factory, 3)
    add_queries(session_factory, 2, active=False)
    add_queries(session_factory, 4, brand_id="other-brand")
    provider = ScriptedProvider("gpt")
    dispatcher = _dispatcher(session_factory, sync_redis, provider, FakeScoring())

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION))

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.summary.total == 3
    assert len(provider.calls) == 3


def test_collection_can_be_limited_to_query_ids(session_factory, sync_redis):
    ids = add_queries(session_factory, 4)
    provider = ScriptedProvider("gpt")
    dispatcher = _dispatcher(session_factory, sync_redis, provider, FakeScoring())

    outcome = dispatcher.dispatch(
        _ctx(JobType.COLLECTION, {"engines": ["chatgpt"], "query_ids": [str(ids[0]), str(ids[2])]})
    )

    assert outcome.summary.total == 2


def test_collection_and_scoring_scores_after_success(session_factory, sync_redis):
    add_queries(session_factory, 2)
    scoring = FakeScoring()
    dispatcher = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), scoring)

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION_AND_SCORING))

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.stage == Stage.SCORING
    assert scoring.calls == [("brand-1", "cust-1", None)]
    assert outcome.metrics["scoring"] == {"positions_processed": 4, "sentiments_processed": 4}


def test_scoring_is_never_called_when_collection_fully_fails(session_factory, sync_redis):
    add_queries(session_factory, 3)
    scoring = FakeScoring()
    dispatcher = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt", default="hard"), scoring)

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION_AND_SCORING))

    assert scoring.calls == []
    assert outcome.status == RunStatus.FAILED
    assert outcome.error_message.endswith("scoring skipped")
    assert outcome.stage_errors[0]["stage"] == "collection"


def test_scoring_is_skipped_for_an_empty_batch(session_factory, sync_redis):
    scoring = FakeScoring()
    dispatcher = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), scoring)

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION_AND_SCORING))

    assert scoring.calls == []
    assert outcome.status == RunStatus.FAILED


def test_scoring_failure_keeps_collection_results(session_factory, sync_redis):
    add_queries(session_factory, 2)
    dispatcher = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), FakeScoring(fail=True))

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION_AND_SCORING))

    assert outcome.status == RunStatus.COMPLETED_WITH_ERRORS
    assert outcome.summary.succeeded == 2
    assert outcome.stage_errors == [{"stage": "scoring", "error": "scoring service returned 502"}]


def test_scoring_only_job(session_factory, sync_redis):
    ok = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), FakeScoring())
    broken = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), FakeScoring(fail=True))

    assert ok.dispatch(_ctx(JobType.SCORING)).status == RunStatus.COMPLETED
    failed = broken.dispatch(_ctx(JobType.SCORING))
    assert failed.status == RunStatus.FAILED
    assert failed.error_message == "scoring service returned 502"


def test_retry_with_nothing_to_retry_completes(session_factory, sync_redis):
    provider = ScriptedProvider("gpt")
    dispatcher = _dispatcher(session_factory, sync_redis, provider, FakeScoring())

    outcome = dispatcher.dispatch(_ctx(JobType.COLLECTION_RETRY, {"lookback_minutes": 30}))

    assert outcome.status == RunStatus.COMPLETED
    assert outcome.summary.total == 0
    assert outcome.metrics["retry"] == {"lookback_minutes": 30, "selected": 0}
    assert provider.calls == []


def test_context_stage_follows_progress(session_factory, sync_redis):
    add_queries(session_factory, 1)
    dispatcher = _dispatcher(session_factory, sync_redis, ScriptedProvider("gpt"), FakeScoring())
    ctx = _ctx(JobType.COLLECTION_AND_SCORING)

    dispatcher.dispatch(ctx)

    assert ctx.stage == Stage.SCORING
