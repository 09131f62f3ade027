"""
Run executor: runs a single JobRun inside a worker thread.

Each worker thread calls executor.execute(run_id), and this method handles
the full lifecycle:

    1. Claim: UPDATE job_runs SET status='running' WHERE id=:id AND status='queued'
       → zero rows means another worker owns it (or it already finished): skip
    2. Build a RunContext (brand, job type, metadata snapshot)
    3. Hand it to the JobTypeDispatcher
    4. Finish: UPDATE ... SET status=<terminal> WHERE id=:id AND status='running'
       with counters, stage, stage errors and metrics

Failures before anything was collected mark the run failed with a stage
error. Failures of single queries never get here; they are recorded on the
execution result by the engine and only show up in the counters.

Run status is monotonic: the conditional updates mean a run can never go
back to queued, and a terminal run is never rewritten.

Thread safety:
- Each execute() call gets its OWN database session for claim and finish
- The dispatcher and engine open their own sessions per unit of work
So multiple threads can call execute() simultaneously without locks.
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.base import as_utc, utcnow
from models.enums import JobType, RunStatus, RunTrigger, Stage
from models.job_run import JobRun
from worker.dispatcher import JobTypeDispatcher, RunContext, RunOutcome

logger = logging.getLogger(__name__)


class RunExecutor:

    def __init__(self, db_session_factory, dispatcher: JobTypeDispatcher):
        self._db_session_factory = db_session_factory
        self._dispatcher = dispatcher

    def execute(self, run_id: uuid.UUID | str) -> dict:
        """
        Execute a single run. Called by WorkerPool from a thread.

        Returns:
            dict with execution status (for logging/debugging, not stored)
        """
        run_id = uuid.UUID(str(run_id))

        # ── Step 1: Claim ───────────────────────────────────────
        if not self._claim(run_id):
            logger.info(f"Run {run_id} is not queued anymore, skipping")
            return {"status": "skipped", "run_id": str(run_id)}

        # The run is ours now: any error from here on must finish it
        try:
            ctx = self._load_context(run_id)
        except Exception as e:
            logger.error(f"Run {run_id} failed in setup: {e}", exc_info=True)
            outcome = RunOutcome(
                status=RunStatus.FAILED,
                stage=Stage.SETUP,
                error_message=str(e),
                stage_errors=[{"stage": Stage.SETUP.value, "error": str(e)}],
            )
            self._finish(run_id, outcome, 0.0)
            return {"status": outcome.status.value, "run_id": str(run_id)}

        # ── Step 2: Dispatch by job type ────────────────────────
        start_time = time.monotonic()
        try:
            outcome = self._dispatcher.dispatch(ctx)
        except Exception as e:
            logger.error(f"Run {run_id} [{ctx.job_type.value}] failed in {ctx.stage.value}: {e}", exc_info=True)
            outcome = RunOutcome(
                status=RunStatus.FAILED,
                stage=ctx.stage,
                error_message=str(e),
                stage_errors=[{"stage": ctx.stage.value, "error": str(e)}],
            )
        elapsed = time.monotonic() - start_time

        # ── Step 3: Finish ──────────────────────────────────────
        finished = self._finish(run_id, outcome, elapsed)
        if finished:
            logger.info(
                f"Run {run_id} [{ctx.job_type.value}] {outcome.status.value} in {elapsed:.3f}s"
            )
        return {"status": outcome.status.value, "run_id": str(run_id)}

    def _claim(self, run_id: uuid.UUID) -> bool:
        session: Session = self._db_session_factory()
        try:
            claimed = session.execute(
                update(JobRun)
                .where(JobRun.id == run_id, JobRun.status == RunStatus.QUEUED.value)
                .values(status=RunStatus.RUNNING.value, started_at=utcnow(), stage=Stage.SETUP.value)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            return claimed.rowcount == 1
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _load_context(self, run_id: uuid.UUID) -> RunContext:
        session: Session = self._db_session_factory()
        try:
            run = session.execute(select(JobRun).where(JobRun.id == run_id)).scalar_one()
            metadata = dict(run.run_metadata or {})
            return RunContext(
                run_id=run.id,
                brand_id=run.brand_id,
                customer_id=run.customer_id,
                job_type=JobType(run.job_type),
                metadata=metadata,
                since=self._scoring_since(session, run, metadata),
            )
        finally:
            session.close()

    @staticmethod
    def _scoring_since(session: Session, run: JobRun, metadata: dict) -> Optional[datetime]:
        """Score answers collected since the previous finished run of the same job."""
        if metadata.get("since"):
            return as_utc(datetime.fromisoformat(metadata["since"]))
        if run.scheduled_job_id is None or run.trigger == RunTrigger.ONE_OFF.value:
            return None
        previous = session.execute(
            select(JobRun.started_at)
            .where(
                JobRun.scheduled_job_id == run.scheduled_job_id,
                JobRun.id != run.id,
                JobRun.status.in_([RunStatus.COMPLETED.value, RunStatus.COMPLETED_WITH_ERRORS.value]),
            )
            .order_by(JobRun.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return as_utc(previous)

    def _finish(self, run_id: uuid.UUID, outcome: RunOutcome, elapsed: float) -> bool:
        values = {
            "status": outcome.status.value,
            "stage": outcome.stage.value,
            "finished_at": utcnow(),
            "error_message": outcome.error_message,
            "stage_errors": outcome.stage_errors,
            "metrics": {**outcome.metrics, "execution_time_sec": round(elapsed, 3)},
        }
        if outcome.summary is not None:
            values.update(
                queries_total=outcome.summary.total,
                queries_succeeded=outcome.summary.succeeded,
                queries_failed=outcome.summary.failed,
                results_in_flight=outcome.summary.in_flight,
            )

        session: Session = self._db_session_factory()
        try:
            finished = session.execute(
                update(JobRun)
                .where(JobRun.id == run_id, JobRun.status == RunStatus.RUNNING.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if finished.rowcount != 1:
                logger.warning(f"Run {run_id} was no longer running when it finished, result not written")
                return False
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
