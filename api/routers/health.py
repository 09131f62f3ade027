"""
Health check endpoint.

Checks Postgres and Redis connectivity and reports how many runs are
waiting in the ready queue. A queue that keeps growing means workers are
not keeping up with the scheduler.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from redis.asyncio import Redis

from api.dependencies import get_db, get_redis
from scheduler.engine import ready_queue_key

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict:
    await db.execute(text("SELECT 1"))
    await redis.ping()
    depth = await redis.llen(ready_queue_key())

    return {"status": "healthy", "postgres": "ok", "redis": "ok", "ready_queue_depth": depth}
