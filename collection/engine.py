"""
Execution engine: fans a batch of queries out across answer engines.

Given a run and a list of items (one query + the engines to ask), the
engine:

    1. Inserts one `pending` ExecutionResult per (query, engine) pair, up front,
       so the run's total is known before any provider is called
    2. Takes ONE collector snapshot per engine for the whole batch
    3. Runs each engine in its own ThreadPoolExecutor sized by that engine's
       max_concurrency. Engines run side by side, so a slow engine never
       holds up a fast one
    4. Walks the provider chain for every pair and records the outcome
    5. Returns a CollectionSummary for the run

Per pair:

    pending → running
        for provider in enabled providers (priority order):
            usable answer              → completed (provider recorded), stop
            async handle only          → stays running with provider_handle, stop
            HardProviderError          → failed, stop
            TransientProviderError     → next provider, unless this entry has
                                         fallback_on_failure = false
        chain exhausted                → failed, "Tried: a, b"

         ┌─────────────┐   ┌───────────────────────┐
         │ chatgpt x3  │   │ claude x2             │  ... one pool per engine
         │ ▶ pair ▶ pair│   │ ▶ pair ▶ pair         │
         └─────────────┘   └───────────────────────┘

Thread safety:
- Each pair gets its OWN database session (created and closed within)
- Providers are stateless apart from their httpx.Client (thread-safe)
- Snapshots are frozen dataclasses
"""

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from collection.chain import CollectorChain, CollectorSnapshot
from collection.health import ProviderHealthTracker
from collection.transitions import current_status, transition_result, update_running_result
from config.settings import settings
from models.base import utcnow
from models.enums import ErrorKind, ExecutionStatus
from models.execution_result import ExecutionResult
from providers.base import AbstractProvider, CollectRequest, ProviderSpec
from providers.errors import ProviderError, TransientProviderError, classify_exception
from providers.registry import get_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionItem:
    query_id: uuid.UUID
    query_text: str
    brand_id: str
    customer_id: str
    engines: tuple[str, ...]
    locale: Optional[str] = None
    country: Optional[str] = None
    retry_of: Optional[uuid.UUID] = None  # set when this item re-runs one failed result


@dataclass
class CollectionSummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    in_flight: int = 0
    errors: list[str] = field(default_factory=list)

    def as_metrics(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "in_flight": self.in_flight,
            "errors": self.errors[:20],
        }


@dataclass
class PairOutcome:
    status: ExecutionStatus
    error: Optional[str] = None


@dataclass(frozen=True)
class _PairTask:
    result_id: uuid.UUID
    engine: str
    request: CollectRequest


class ExecutionEngine:

    def __init__(
        self,
        db_session_factory,
        chain: CollectorChain,
        health: Optional[ProviderHealthTracker] = None,
        provider_lookup: Callable[[str], AbstractProvider] = get_provider,
    ):
        self._db_session_factory = db_session_factory
        self._chain = chain
        self._health = health
        self._provider_lookup = provider_lookup

    def execute_queries(self, run_id: Optional[uuid.UUID], items: list[CollectionItem]) -> CollectionSummary:
        summary = CollectionSummary()
        tasks = self._create_pending_results(run_id, items)
        summary.total = len(tasks)
        if not tasks:
            return summary

        # ── Snapshot once per engine for the whole dispatch ─────
        by_engine: dict[str, list[_PairTask]] = {}
        for task in tasks:
            by_engine.setdefault(task.engine, []).append(task)
        snapshots = {engine: self._chain.snapshot(engine) for engine in by_engine}

        # ── One pool per engine, all engines at once ────────────
        pools: list[ThreadPoolExecutor] = []
        futures: dict[Future, _PairTask] = {}
        try:
            for engine, engine_tasks in by_engine.items():
                snapshot = snapshots[engine]
                pool = ThreadPoolExecutor(
                    max_workers=max(1, snapshot.max_concurrency),
                    thread_name_prefix=f"collect-{engine}",
                )
                pools.append(pool)
                for task in engine_tasks:
                    futures[pool.submit(self._execute_pair, task, snapshot)] = task

            wait(futures)
        finally:
            for pool in pools:
                pool.shutdown(wait=True)

        for future, task in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error(f"Result {task.result_id} [{task.engine}] crashed: {exc}", exc_info=exc)
                outcome = self._fail_after_crash(task, exc)
            else:
                outcome = future.result()

            if outcome.status == ExecutionStatus.COMPLETED:
                summary.succeeded += 1
            elif outcome.status == ExecutionStatus.FAILED:
                summary.failed += 1
                if outcome.error:
                    summary.errors.append(f"{task.engine}: {outcome.error}")
            else:
                summary.in_flight += 1

        logger.info(
            f"Run {run_id}: collected {summary.total} pairs "
            f"({summary.succeeded} ok, {summary.failed} failed, {summary.in_flight} in flight)"
        )
        return summary

    # ── Setup ───────────────────────────────────────────────────

    def _create_pending_results(self, run_id, items: list[CollectionItem]) -> list[_PairTask]:
        tasks: list[_PairTask] = []
        session: Session = self._db_session_factory()
        try:
            now = utcnow()
            for item in items:
                for engine in item.engines:
                    result = ExecutionResult(
                        id=uuid.uuid4(),
                        job_run_id=run_id,
                        query_id=item.query_id,
                        brand_id=item.brand_id,
                        customer_id=item.customer_id,
                        engine=engine,
                        retry_of=item.retry_of,
                        status=ExecutionStatus.PENDING.value,
                        status_transitions=[{
                            "from": None, "to": ExecutionStatus.PENDING.value,
                            "at": now.isoformat(), "source": "engine",
                        }],
                    )
                    session.add(result)
                    tasks.append(_PairTask(
                        result_id=result.id,
                        engine=engine,
                        request=CollectRequest(
                            query_id=str(item.query_id),
                            query_text=item.query_text,
                            engine=engine,
                            brand_id=item.brand_id,
                            locale=item.locale or settings.DEFAULT_LOCALE,
                            country=item.country or settings.DEFAULT_COUNTRY,
                        ),
                    ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        return tasks

    # ── Per pair ────────────────────────────────────────────────

    def _execute_pair(self, task: _PairTask, snapshot: CollectorSnapshot) -> PairOutcome:
        session: Session = self._db_session_factory()
        try:
            if not transition_result(session, task.result_id, ExecutionStatus.RUNNING, source="engine"):
                status = current_status(session, task.result_id) or ExecutionStatus.FAILED
                return PairOutcome(status)

            providers = snapshot.enabled_providers
            if not providers:
                reason = f"No enabled providers for {task.engine}"
                return self._fail(session, task, reason, ErrorKind.HARD, attempts=[], fallback_count=0)

            started = time.monotonic()
            attempts: list[dict] = []
            tried: list[str] = []

            for spec in providers:
                tried.append(spec.name)
                error = self._attempt(session, task, spec, attempts, started)
                if error is None:
                    # completed, or left running with an async handle
                    status = current_status(session, task.result_id) or ExecutionStatus.FAILED
                    return PairOutcome(status)

                if error.kind == ErrorKind.HARD:
                    return self._fail(session, task, str(error), ErrorKind.HARD, attempts, len(tried) - 1)

                if not spec.fallback_on_failure:
                    reason = f"{spec.name} failed and does not allow fallback: {error}"
                    return self._fail(session, task, reason, ErrorKind.TRANSIENT, attempts, len(tried) - 1)

                if spec is not providers[-1]:
                    logger.warning(f"Result {task.result_id} [{task.engine}]: {spec.name} failed ({error}), falling back")

            reason = f"All providers failed for {task.engine}. Tried: {', '.join(tried)}"
            return self._fail(session, task, reason, ErrorKind.TRANSIENT, attempts, len(tried) - 1)
        finally:
            session.close()

    def _attempt(
        self,
        session: Session,
        task: _PairTask,
        spec: ProviderSpec,
        attempts: list[dict],
        started: float,
    ) -> Optional[ProviderError]:
        """
        Call one provider. Returns None when the pair is settled (completed or
        handed to the async sweep), or the classified error to act on.
        """
        attempt_started = time.monotonic()
        error: Optional[ProviderError] = None
        try:
            provider = self._provider_lookup(spec.name)
        except ValueError as e:
            # unknown provider name in the chain: skip it like an unavailable one
            error = TransientProviderError(str(e), spec.name)

        if error is None:
            try:
                answer = provider.collect(task.request, spec)
            except Exception as e:
                error = classify_exception(e, spec.name)

        if error is None:
            fallback_count = len(attempts)
            if answer.is_usable:
                attempts.append(self._attempt_entry(spec, "completed", attempt_started))
                self._record_health(task.engine, spec.name, "completed")
                transition_result(
                    session, task.result_id, ExecutionStatus.COMPLETED, source="engine",
                    provider=spec.name,
                    provider_handle=answer.handle,
                    raw_answer=answer.answer,
                    citations=answer.citations,
                    attempts=attempts,
                    fallback_count=fallback_count,
                    execution_time_ms=int((time.monotonic() - started) * 1000),
                )
                return None
            if answer.is_pending and provider.is_async:
                attempts.append(self._attempt_entry(spec, "pending", attempt_started))
                self._record_health(task.engine, spec.name, "pending")
                update_running_result(
                    session, task.result_id,
                    provider=spec.name,
                    provider_handle=answer.handle,
                    attempts=attempts,
                    fallback_count=fallback_count,
                )
                logger.info(f"Result {task.result_id} [{task.engine}] waiting on {spec.name} handle {answer.handle}")
                return None
            error = TransientProviderError(f"{spec.name}: empty answer", spec.name)

        attempts.append(self._attempt_entry(spec, error.kind.value, attempt_started, str(error)))
        self._record_health(task.engine, spec.name, error.kind.value, str(error))
        return error

    def _fail(self, session, task, reason, kind: ErrorKind, attempts, fallback_count) -> PairOutcome:
        moved = transition_result(
            session, task.result_id, ExecutionStatus.FAILED, source="engine", reason=reason,
            error_message=reason,
            error_kind=kind.value,
            attempts=attempts,
            fallback_count=max(0, fallback_count),
            provider=attempts[-1]["provider"] if attempts else None,
        )
        if not moved:
            return PairOutcome(current_status(session, task.result_id) or ExecutionStatus.FAILED)
        logger.warning(f"Result {task.result_id} [{task.engine}] failed: {reason}")
        return PairOutcome(ExecutionStatus.FAILED, reason)

    def _fail_after_crash(self, task: _PairTask, exc: BaseException) -> PairOutcome:
        session: Session = self._db_session_factory()
        try:
            reason = f"Unexpected error: {exc}"
            transition_result(
                session, task.result_id, ExecutionStatus.FAILED, source="engine",
                reason=reason, error_message=reason, error_kind=ErrorKind.HARD.value,
            )
            return PairOutcome(current_status(session, task.result_id) or ExecutionStatus.FAILED, reason)
        finally:
            session.close()

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _attempt_entry(spec: ProviderSpec, outcome: str, started: float, error: Optional[str] = None) -> dict:
        entry = {
            "provider": spec.name,
            "outcome": outcome,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        if error:
            entry["error"] = error[:500]
        return entry

    def _record_health(self, engine: str, provider: str, outcome: str, error: Optional[str] = None) -> None:
        if self._health is None:
            return
        try:
            self._health.record(engine, provider, outcome, error)
        except Exception as e:
            # health is informational, never fail a collection over it
            logger.warning(f"Could not record provider health for {provider}: {e}")
