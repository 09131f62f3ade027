"""
Worker process entry point.

This is a SEPARATE process from the FastAPI API server.
It runs three components in the same process:

    1. SchedulerEngine: evaluates cron schedules, creates queued runs,
       pushes due run ids onto the Redis ready queue
    2. WorkerPool: pops run ids from the ready queue and executes them
       (job type dispatch → execution engine → providers)
    3. ResultSweeper: finishes results left running by async providers
       and fails results nobody is working on anymore

All run as daemon threads. The main thread just waits for Ctrl+C (SIGINT)
or a kill signal (SIGTERM) to shut down gracefully.

To run:
    python -m worker.main
"""

import logging
import signal
import threading

from redis import Redis

from collection.chain import CollectorChain
from collection.engine import ExecutionEngine
from collection.health import ProviderHealthTracker
from collection.queries import SqlQueryStore
from collection.sweep import ResultSweeper
from config.settings import settings
from models.base import Base, SyncSessionLocal, sync_engine
from scheduler.engine import SchedulerEngine
from worker.dispatcher import JobTypeDispatcher
from worker.executor import RunExecutor
from worker.pool import WorkerPool
from worker.scoring import HttpScoringClient

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    # Safe to call repeatedly; covers the worker starting before the API
    logger.info("Ensuring database tables exist...")
    Base.metadata.create_all(sync_engine)

    redis_client = Redis.from_url(settings.redis_url)

    chain = CollectorChain(redis_client, SyncSessionLocal)
    health = ProviderHealthTracker(redis_client)
    execution_engine = ExecutionEngine(SyncSessionLocal, chain, health)
    dispatcher = JobTypeDispatcher(
        execution_engine,
        SqlQueryStore(SyncSessionLocal),
        HttpScoringClient(),
        SyncSessionLocal,
    )

    # cron → queued runs → Redis
    scheduler = SchedulerEngine(redis_client, SyncSessionLocal)
    scheduler.start()

    # Redis → thread pool → dispatcher
    pool = WorkerPool(redis_client, RunExecutor(SyncSessionLocal, dispatcher))
    pool.start()

    # async provider handles → completed / failed
    sweeper = ResultSweeper(SyncSessionLocal, chain, health)
    sweeper.start()

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    shutdown_event = threading.Event()

    def shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping...")
        scheduler.stop()
        sweeper.stop()
        pool.stop()
        shutdown_event.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info("Worker process running. Press Ctrl+C to stop.")
    shutdown_event.wait()
    logger.info("Worker process exited")


if __name__ == "__main__":
    main()
