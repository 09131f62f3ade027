"""
Async result sweep: finishes results that async providers left `running`.

Runs in a daemon thread inside the worker process, every SWEEP_INTERVAL
seconds:

    1. Poll: running results WITH a provider_handle
       → provider.poll(handle)
           answer              → completed
           None (not ready)    → leave running, unless older than
                                 ASYNC_RESULT_TIMEOUT_MINUTES → failed
           HardProviderError   → failed
           transient error     → leave running, try again next sweep
    2. Stuck: running results WITHOUT a handle whose last update is older than
       STUCK_RUNNING_TIMEOUT_MINUTES → failed (the worker that owned them died)
    3. Reconcile: recount succeeded/failed/in-flight on every run touched

The sweep only ever moves running → completed | failed, through the same
guarded transition as the engine, so a result the engine finishes at the
same moment is never overwritten. It never changes a run's status.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from collection.chain import CollectorChain
from collection.health import ProviderHealthTracker
from collection.transitions import transition_result
from config.settings import settings
from models.base import as_utc, utcnow
from models.enums import ErrorKind, ExecutionStatus
from models.execution_result import ExecutionResult
from models.job_run import JobRun
from providers.base import AbstractProvider, ProviderSpec
from providers.errors import HardProviderError, ProviderError, classify_exception
from providers.registry import get_provider

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    polled: int = 0
    completed: int = 0
    failed: int = 0
    still_running: int = 0
    stuck_failed: int = 0
    runs_reconciled: int = 0


class ResultSweeper:

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
        self._running = False

    def start(self) -> None:
        """Start the sweep loop in a daemon thread."""
        self._running = True
        thread = threading.Thread(target=self._run_loop, daemon=True)
        thread.start()
        logger.info(f"Result sweeper started (every {settings.SWEEP_INTERVAL}s)")

    def stop(self) -> None:
        self._running = False

    def _run_loop(self) -> None:
        while self._running:
            try:
                report = self.sweep()
                if report.polled or report.stuck_failed:
                    logger.info(f"Sweep: {report}")
            except Exception as e:
                logger.error(f"Sweep loop error: {e}", exc_info=True)
            time.sleep(settings.SWEEP_INTERVAL)

    def sweep(self, now=None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        touched_runs: set[uuid.UUID] = set()

        session: Session = self._db_session_factory()
        try:
            self._poll_async_results(session, now, report, touched_runs)
            self._fail_stuck_results(session, now, report, touched_runs)
            for run_id in touched_runs:
                reconcile_run_counters(session, run_id)
                report.runs_reconciled += 1
        finally:
            session.close()
        return report

    # ── Step 1: poll provider handles ───────────────────────────

    def _poll_async_results(self, session: Session, now, report: SweepReport, touched: set) -> None:
        rows = session.execute(
            select(ExecutionResult)
            .where(
                ExecutionResult.status == ExecutionStatus.RUNNING.value,
                ExecutionResult.provider_handle.is_not(None),
            )
            .order_by(ExecutionResult.updated_at)
            .limit(settings.SWEEP_BATCH_SIZE)
        ).scalars().all()

        deadline = timedelta(minutes=settings.ASYNC_RESULT_TIMEOUT_MINUTES)
        snapshots: dict = {}

        for row in rows:
            report.polled += 1
            if row.engine not in snapshots:
                snapshots[row.engine] = self._chain.snapshot(row.engine)
            spec = snapshots[row.engine].find(row.provider) or ProviderSpec(name=row.provider)

            answer = None
            error: Optional[ProviderError] = None
            try:
                provider = self._provider_lookup(row.provider)
                if not provider.is_async:
                    raise HardProviderError(f"{row.provider} cannot be polled", row.provider)
                answer = provider.poll(row.provider_handle, spec)
            except Exception as e:
                error = classify_exception(e, row.provider or "unknown")

            if answer is not None and answer.is_usable:
                moved = transition_result(
                    session, row.id, ExecutionStatus.COMPLETED, source="sweep",
                    raw_answer=answer.answer,
                    citations=answer.citations,
                    execution_time_ms=int((now - as_utc(row.created_at)).total_seconds() * 1000),
                )
                self._record_health(row.engine, row.provider, "completed")
                if moved:
                    report.completed += 1
                    touched.add(row.job_run_id)
                continue

            if error is not None and error.kind == ErrorKind.HARD:
                reason = str(error)
            elif now - as_utc(row.created_at) > deadline:
                reason = f"{row.provider} did not deliver within {settings.ASYNC_RESULT_TIMEOUT_MINUTES} minutes"
            else:
                report.still_running += 1
                continue

            moved = transition_result(
                session, row.id, ExecutionStatus.FAILED, source="sweep", reason=reason,
                error_message=reason,
                error_kind=(error.kind if error else ErrorKind.TRANSIENT).value,
            )
            self._record_health(row.engine, row.provider, "hard" if error else "transient", reason)
            if moved:
                report.failed += 1
                touched.add(row.job_run_id)
                logger.warning(f"Result {row.id} [{row.engine}] failed in sweep: {reason}")

    # ── Step 2: running rows nobody is working on ───────────────

    def _fail_stuck_results(self, session: Session, now, report: SweepReport, touched: set) -> None:
        cutoff = now - timedelta(minutes=settings.STUCK_RUNNING_TIMEOUT_MINUTES)
        rows = session.execute(
            select(ExecutionResult.id, ExecutionResult.job_run_id, ExecutionResult.engine)
            .where(
                ExecutionResult.status == ExecutionStatus.RUNNING.value,
                ExecutionResult.provider_handle.is_(None),
                ExecutionResult.updated_at < cutoff,
            )
            .limit(settings.SWEEP_BATCH_SIZE)
        ).all()

        reason = f"Stuck in running for more than {settings.STUCK_RUNNING_TIMEOUT_MINUTES} minutes"
        for row in rows:
            moved = transition_result(
                session, row.id, ExecutionStatus.FAILED, source="sweep", reason=reason,
                error_message=reason, error_kind=ErrorKind.TRANSIENT.value,
            )
            if moved:
                report.stuck_failed += 1
                touched.add(row.job_run_id)

    def _record_health(self, engine: str, provider: Optional[str], outcome: str, error: Optional[str] = None) -> None:
        if self._health is None or not provider:
            return
        try:
            self._health.record(engine, provider, outcome, error)
        except Exception as e:
            logger.warning(f"Could not record provider health for {provider}: {e}")


def reconcile_run_counters(session: Session, run_id: Optional[uuid.UUID]) -> None:
    """Recount a run's results. Touches counters only, never the run status."""
    if run_id is None:
        return
    row = session.execute(
        select(
            func.count(ExecutionResult.id).label("total"),
            func.sum(case((ExecutionResult.status == ExecutionStatus.COMPLETED.value, 1), else_=0)).label("succeeded"),
            func.sum(case((ExecutionResult.status == ExecutionStatus.FAILED.value, 1), else_=0)).label("failed"),
        ).where(ExecutionResult.job_run_id == run_id)
    ).one()

    total = row.total or 0
    succeeded = int(row.succeeded or 0)
    failed = int(row.failed or 0)
    session.execute(
        update(JobRun)
        .where(JobRun.id == run_id)
        .values(
            queries_total=total,
            queries_succeeded=succeeded,
            queries_failed=failed,
            results_in_flight=total - succeeded - failed,
        )
        .execution_options(synchronize_session=False)
    )
    session.commit()
