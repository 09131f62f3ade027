"""
FastAPI dependency injection.

- `db: AsyncSession = Depends(get_db)` gives an endpoint a session that is
  closed when the request ends. Scheduling and collector services are
  synchronous, so endpoints call them through `await db.run_sync(fn, ...)`.
- `redis: Redis = Depends(get_redis)` returns the client created at startup.

Tests override both with SQLite and fakeredis via app.dependency_overrides.
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from redis.asyncio import Redis

from models.base import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def get_redis(request: Request) -> Redis:
    return request.app.state.redis
