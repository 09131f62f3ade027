"""
Scheduler Engine: turns cron slots into queued runs and hands them to workers.

This runs in a daemon thread inside the worker process.
Every SCHEDULER_TICK_INTERVAL seconds it executes this loop:

    1. Evaluate due jobs: active jobs whose cron fires in the current slot
       (or fired since the previous tick) and have no run for that slot yet
       → enqueue_job_run(trigger=scheduler), deduped on the slot key
    2. Dispatch: queued runs with scheduled_for <= now that were never
       pushed → mark dispatched_at, RPUSH their id onto the Redis ready queue
       → the WorkerPool BLPOPs from that queue

         Postgres                                     Redis
    ┌──────────────────┐  due?   ┌──────────────┐  push  ┌────────────┐
    │ scheduled_jobs   │────────>│ job_runs      │──────>│ ready queue│
    │ (cron, timezone) │ enqueue │ status=queued │       │ (run ids)  │
    └──────────────────┘         └──────────────┘       └────────────┘

The engine never EXECUTES anything. Manual, one-off and retry runs are
created by the API with status=queued and reach workers through the same
dispatch step, so there is only one road into the ready queue.

Running two schedulers is safe: the slot unique key makes the second
enqueue a counted duplicate, and dispatched_at is claimed with a
conditional UPDATE so a run is pushed at most once.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from redis import Redis
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from config.settings import settings
from models.base import utcnow
from models.enums import RunStatus, RunTrigger
from models.job_run import JobRun
from scheduler.service import ScheduledJobNotFound, enqueue_job_run, list_due_jobs

logger = logging.getLogger(__name__)


def ready_queue_key() -> str:
    # Shared with worker/pool.py
    return settings.redis_key("ready")


@dataclass
class TickReport:
    due: int = 0
    enqueued: int = 0
    duplicates: int = 0
    dispatched: int = 0


class SchedulerEngine:
    """
    Runs the scheduling loop in a background thread.

    Think of it as a traffic controller: it decides which run may go and
    when, but doesn't drive the cars.
    """

    def __init__(self, redis_client: Redis, db_session_factory):
        self._redis = redis_client
        self._db_session_factory = db_session_factory
        self._running = False
        self._last_tick: Optional[datetime] = None

    def start(self) -> None:
        """Start the scheduling loop in a daemon thread."""
        self._running = True
        thread = threading.Thread(target=self._run_loop, daemon=True)
        thread.start()
        logger.info(f"Scheduler engine started (tick every {settings.SCHEDULER_TICK_INTERVAL}s)")

    def stop(self) -> None:
        """Signal the loop to stop. It will finish its current tick and exit."""
        self._running = False

    def _run_loop(self) -> None:
        while self._running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}", exc_info=True)
            time.sleep(settings.SCHEDULER_TICK_INTERVAL)

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or utcnow()
        report = TickReport()
        self._enqueue_due_jobs(now, report)
        self._dispatch_queued_runs(now, report)
        self._last_tick = now
        return report

    def _enqueue_due_jobs(self, now: datetime, report: TickReport) -> None:
        session: Session = self._db_session_factory()
        try:
            due = list_due_jobs(session, now=now, since=self._last_tick)
            report.due = len(due)
            for item in due:
                try:
                    enqueued = enqueue_job_run(
                        session, item.job_id, scheduled_for=item.slot,
                        trigger=RunTrigger.SCHEDULER, now=now,
                    )
                except ScheduledJobNotFound:
                    # deleted between evaluation and enqueue
                    session.rollback()
                    continue
                if enqueued.created:
                    report.enqueued += 1
                else:
                    report.duplicates += 1

            if report.enqueued or report.duplicates:
                logger.info(f"Tick: {report.enqueued} runs enqueued, {report.duplicates} duplicate slots")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _dispatch_queued_runs(self, now: datetime, report: TickReport) -> None:
        """
        Push queued, due, never-dispatched runs onto the Redis ready queue.

        dispatched_at is claimed first (conditional UPDATE), then the id is
        pushed. A crash between the two leaves a queued run with
        dispatched_at set; POST /runs/{id}/redispatch clears it.
        """
        session: Session = self._db_session_factory()
        try:
            candidates = session.execute(
                select(JobRun.id, JobRun.job_type)
                .where(
                    JobRun.status == RunStatus.QUEUED.value,
                    JobRun.dispatched_at.is_(None),
                    JobRun.scheduled_for <= now,
                )
                .order_by(JobRun.scheduled_for)
                .limit(settings.SCHEDULER_DISPATCH_BATCH)
            ).all()

            for run_id, job_type in candidates:
                claimed = session.execute(
                    update(JobRun)
                    .where(JobRun.id == run_id, JobRun.dispatched_at.is_(None))
                    .values(dispatched_at=now)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                if claimed.rowcount != 1:
                    continue

                self._redis.rpush(ready_queue_key(), json.dumps({
                    "run_id": str(run_id),
                    "job_type": job_type,
                }))
                report.dispatched += 1

            if report.dispatched:
                logger.info(f"Dispatched {report.dispatched} runs to ready queue")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
