"""
Job type dispatcher: interprets a run's job type.

Job types are a CLOSED set (models.enums.JobType). Each one has exactly one
handler in HANDLERS below, and the module refuses to import if a JobType
is missing from it, so adding a job type without a handler fails at
startup instead of at 3am.

    collection              active queries × engines → execution engine
    scoring                 scoring collaborator only
    collection_and_scoring  collection, then scoring IF anything succeeded
    collection_retry        failed results in the lookback window → re-run

Run status from a collection summary:
    nothing failed             → completed   (an empty batch counts as nothing failed)
    some failed                → completed_with_errors
    every pair failed          → failed

Stage gating for collection_and_scoring:
    zero successful results    → scoring is never called, run failed at
                                 the collection stage
    scoring raises             → run completed_with_errors, the error is
                                 kept in stage_errors, collection results
                                 are left exactly as they are
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from collection.defaults import normalize_engines
from collection.engine import CollectionItem, CollectionSummary, ExecutionEngine
from collection.queries import SqlQueryStore
from config.settings import settings
from models.enums import JobType, RunStatus, Stage
from worker.retry import select_retry_candidates
from worker.scoring import ScoringCollaborator

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    run_id: uuid.UUID
    brand_id: str
    customer_id: str
    job_type: JobType
    metadata: dict = field(default_factory=dict)
    since: Optional[datetime] = None
    stage: Stage = Stage.SETUP


@dataclass
class RunOutcome:
    status: RunStatus
    stage: Stage
    summary: Optional[CollectionSummary] = None
    metrics: dict = field(default_factory=dict)
    stage_errors: list[dict] = field(default_factory=list)
    error_message: Optional[str] = None


def status_from_summary(summary: CollectionSummary) -> RunStatus:
    if summary.failed == 0:
        return RunStatus.COMPLETED
    if summary.succeeded == 0:
        return RunStatus.FAILED
    return RunStatus.COMPLETED_WITH_ERRORS


class JobTypeDispatcher:

    def __init__(
        self,
        execution_engine: ExecutionEngine,
        query_store: SqlQueryStore,
        scoring: ScoringCollaborator,
        db_session_factory,
    ):
        self.execution_engine = execution_engine
        self.query_store = query_store
        self.scoring = scoring
        self.db_session_factory = db_session_factory

    def dispatch(self, ctx: RunContext) -> RunOutcome:
        handler = HANDLERS[ctx.job_type]
        logger.info(f"Run {ctx.run_id}: dispatching {ctx.job_type.value} for brand {ctx.brand_id}")
        return handler(self, ctx)

    # ── Building blocks shared by the handlers ──────────────────

    def build_collection_items(self, ctx: RunContext) -> list[CollectionItem]:
        engines = tuple(normalize_engines(ctx.metadata.get("engines")))
        queries = self.query_store.list_active_queries(ctx.brand_id, ctx.customer_id)

        wanted = ctx.metadata.get("query_ids")
        if wanted:
            wanted = {str(q) for q in wanted}
            queries = [q for q in queries if str(q.id) in wanted]

        return [
            CollectionItem(
                query_id=q.id,
                query_text=q.text,
                brand_id=q.brand_id,
                customer_id=q.customer_id,
                engines=engines,
                locale=q.locale or ctx.metadata.get("locale"),
                country=q.country or ctx.metadata.get("country"),
            )
            for q in queries
        ]

    def collect(self, ctx: RunContext, items: list[CollectionItem]) -> RunOutcome:
        ctx.stage = Stage.COLLECTION
        summary = self.execution_engine.execute_queries(ctx.run_id, items)
        outcome = RunOutcome(
            status=status_from_summary(summary),
            stage=Stage.COLLECTION,
            summary=summary,
            metrics={"collection": summary.as_metrics()},
        )
        if outcome.status == RunStatus.FAILED:
            outcome.error_message = f"All {summary.total} collection results failed"
            outcome.stage_errors.append({"stage": Stage.COLLECTION.value, "error": outcome.error_message})
        return outcome

    def score(self, ctx: RunContext, outcome: RunOutcome) -> RunOutcome:
        ctx.stage = Stage.SCORING
        outcome.stage = Stage.SCORING
        try:
            result = self.scoring.score_brand(ctx.brand_id, ctx.customer_id, ctx.since)
        except Exception as e:
            logger.error(f"Run {ctx.run_id}: scoring failed: {e}")
            outcome.stage_errors.append({"stage": Stage.SCORING.value, "error": str(e)})
            outcome.metrics["scoring"] = {"error": str(e)}
            return outcome
        outcome.metrics["scoring"] = result.as_metrics()
        return outcome


# ── Handlers, one per job type ──────────────────────────────────


def run_collection(dispatcher: JobTypeDispatcher, ctx: RunContext) -> RunOutcome:
    items = dispatcher.build_collection_items(ctx)
    return dispatcher.collect(ctx, items)


def run_scoring(dispatcher: JobTypeDispatcher, ctx: RunContext) -> RunOutcome:
    outcome = RunOutcome(status=RunStatus.COMPLETED, stage=Stage.SCORING)
    dispatcher.score(ctx, outcome)
    if outcome.stage_errors:
        outcome.status = RunStatus.FAILED
        outcome.error_message = outcome.stage_errors[-1]["error"]
    return outcome


def run_collection_and_scoring(dispatcher: JobTypeDispatcher, ctx: RunContext) -> RunOutcome:
    items = dispatcher.build_collection_items(ctx)
    outcome = dispatcher.collect(ctx, items)

    if outcome.summary is None or outcome.summary.succeeded == 0:
        outcome.status = RunStatus.FAILED
        outcome.error_message = (
            outcome.error_message or "Collection produced no successful results"
        ) + "; scoring skipped"
        outcome.stage_errors = [{"stage": Stage.COLLECTION.value, "error": outcome.error_message}]
        return outcome

    dispatcher.score(ctx, outcome)
    if outcome.stage_errors:
        outcome.status = RunStatus.COMPLETED_WITH_ERRORS
        outcome.error_message = outcome.stage_errors[-1]["error"]
    return outcome


def run_collection_retry(dispatcher: JobTypeDispatcher, ctx: RunContext) -> RunOutcome:
    lookback = int(ctx.metadata.get("lookback_minutes") or settings.RETRY_LOOKBACK_MINUTES)
    engines = normalize_engines(ctx.metadata["engines"]) if ctx.metadata.get("engines") else None

    session = dispatcher.db_session_factory()
    try:
        candidates = select_retry_candidates(
            session, ctx.brand_id, ctx.customer_id, lookback, engines=engines,
        )
    finally:
        session.close()

    if not candidates:
        logger.info(f"Run {ctx.run_id}: nothing to retry in the last {lookback} minutes")
        summary = CollectionSummary()
        return RunOutcome(
            status=RunStatus.COMPLETED,
            stage=Stage.COLLECTION,
            summary=summary,
            metrics={"collection": summary.as_metrics(), "retry": {"lookback_minutes": lookback, "selected": 0}},
        )

    queries = {q.id: q for q in dispatcher.query_store.get_queries({c.query_id for c in candidates})}
    items = [
        CollectionItem(
            query_id=c.query_id,
            query_text=queries[c.query_id].text,
            brand_id=ctx.brand_id,
            customer_id=ctx.customer_id,
            engines=(c.engine,),
            locale=queries[c.query_id].locale,
            country=queries[c.query_id].country,
            retry_of=c.result_id,
        )
        for c in candidates
        if c.query_id in queries
    ]

    outcome = dispatcher.collect(ctx, items)
    outcome.metrics["retry"] = {"lookback_minutes": lookback, "selected": len(items)}
    return outcome


HANDLERS: dict[JobType, Callable[[JobTypeDispatcher, RunContext], RunOutcome]] = {
    JobType.COLLECTION: run_collection,
    JobType.SCORING: run_scoring,
    JobType.COLLECTION_AND_SCORING: run_collection_and_scoring,
    JobType.COLLECTION_RETRY: run_collection_retry,
}

_missing = set(JobType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No dispatcher handler for job types: {sorted(t.value for t in _missing)}")
