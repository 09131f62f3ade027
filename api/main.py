"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, connect to Redis)
3. Registers the routers (health, scheduled jobs, runs, collectors)
4. Runs shutdown logic (close connections)

The API only writes definitions and queued runs. Scheduling, dispatch and
execution happen in the worker process (python -m worker.main).

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis as AsyncRedis

from config.settings import settings
from models.base import async_engine, Base
from api.routers import collectors, health, runs, scheduled_jobs

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    logger.info(f"API ready, default engines: {', '.join(settings.DEFAULT_ENGINES)}")

    yield

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.redis.close()
    await async_engine.dispose()
    logger.info("API shut down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Answer Collector",
        description=(
            "Scheduled brand-monitoring jobs that collect answers from AI answer "
            "engines through configurable provider chains"
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(scheduled_jobs.router)
    app.include_router(runs.router)
    app.include_router(collectors.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
