"""
Worker pool: manages a thread pool that executes runs from Redis.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    WorkerPool                            │
    │                                                         │
    │  Dispatcher Thread                                      │
    │  ┌───────────────────────┐                              │
    │  │ BLPOP from Redis      │  ← blocks until a run id     │
    │  │ (ready queue)         │    arrives, zero polling     │
    │  └──────────┬────────────┘                              │
    │             │ submit()                                   │
    │             ▼                                            │
    │  ┌──────────────────────────────────────────┐           │
    │  │ ThreadPoolExecutor (WORKER_POOL_SIZE)     │           │
    │  │  ┌────────┐ ┌────────┐ ┌────────┐ ┌────────┐       │
    │  │  │ run A  │ │ run B  │ │ run C  │ │(idle)  │       │
    │  │  └────────┘ └────────┘ └────────┘ └────────┘       │
    │  └──────────────────────────────────────────┘           │
    └─────────────────────────────────────────────────────────┘

A run thread does not do the provider calls itself: the execution engine
opens a pool per answer engine underneath it. WORKER_POOL_SIZE bounds how
many RUNS are in progress; each engine's max_concurrency bounds provider
calls.

Delivery is at-least-once from Redis' point of view (a restart can replay
an id), and exactly-once in effect because RunExecutor claims runs with a
conditional update.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from redis import Redis

from config.settings import settings
from scheduler.engine import ready_queue_key
from worker.executor import RunExecutor

logger = logging.getLogger(__name__)


class WorkerPool:

    def __init__(self, redis_client: Redis, run_executor: RunExecutor):
        self._redis = redis_client
        self._executor = ThreadPoolExecutor(
            max_workers=settings.WORKER_POOL_SIZE,
            thread_name_prefix="run-worker",
        )
        self._run_executor = run_executor
        self._running = False

    def start(self) -> None:
        """Start the dispatcher thread that feeds runs to the thread pool."""
        self._running = True
        dispatcher = threading.Thread(target=self._dispatch_loop, daemon=True)
        dispatcher.start()
        logger.info(f"Worker pool started with {settings.WORKER_POOL_SIZE} threads")

    def stop(self) -> None:
        """Signal the dispatcher to stop, then shut down the thread pool."""
        self._running = False
        self._executor.shutdown(wait=True)
        logger.info("Worker pool stopped")

    def _dispatch_loop(self) -> None:
        """
        Continuously pop run ids from Redis and submit them to the thread pool.

        BLPOP returns (key, value) when a run is available, or None on timeout.
        The timeout ensures we check self._running periodically so the loop
        can exit cleanly on shutdown.
        """
        while self._running:
            try:
                result = self._redis.blpop(
                    ready_queue_key(), timeout=settings.WORKER_POLL_INTERVAL
                )
                if result is None:
                    continue

                _, raw_data = result
                message = json.loads(raw_data)

                logger.debug(f"Dispatching run {message['run_id']} to thread pool")
                future: Future = self._executor.submit(
                    self._run_executor.execute, message["run_id"]
                )
                future.add_done_callback(self._on_run_done)

            except Exception as e:
                logger.error(f"Dispatch error: {e}", exc_info=True)

    def _on_run_done(self, future: Future) -> None:
        """
        Callback fired when a worker thread finishes executing a run.

        Used only for logging unhandled exceptions; normal success/failure
        handling happens inside RunExecutor.execute().
        """
        try:
            exc = future.exception()
            if exc:
                logger.error(f"Unhandled worker exception: {exc}")
        except Exception as e:
            logger.error(f"Callback error: {e}")
