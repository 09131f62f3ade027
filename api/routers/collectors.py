"""
Collector chain endpoints.

GET /collectors/                 → Every engine's chain (stored or built-in)
GET /collectors/{engine}         → One engine's chain
PUT /collectors/{engine}         → Replace an engine's chain, bump its version
GET /collectors/{engine}/health  → Per-provider success/failure counters

A PUT only affects dispatches that start after it: in-flight dispatches
keep the snapshot they took. The Redis snapshot cache is deleted right
after the write so workers see the new chain on their next snapshot.
"""

from fastapi import APIRouter, Depends, HTTPException
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_redis
from api.schemas.collector import (
    CollectorConfigResponse,
    CollectorConfigUpdate,
    CollectorHealthResponse,
)
from collection.chain import apply_collector_config, collector_cache_key, default_snapshot
from collection.defaults import DEFAULT_CHAINS, normalize_engine
from collection.health import health_key, parse_health
from models.collector_config import CollectorConfig

router = APIRouter(prefix="/collectors", tags=["collectors"])


def _canonical_engine(engine: str) -> str:
    canonical = normalize_engine(engine)
    if canonical is None:
        raise HTTPException(status_code=404, detail=f"Unknown engine '{engine}'")
    return canonical


def _from_row(row: CollectorConfig) -> CollectorConfigResponse:
    return CollectorConfigResponse(
        engine=row.engine,
        providers=row.providers,
        max_concurrency=row.max_concurrency,
        enabled=row.enabled,
        version=row.version,
        source="database",
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


def _from_default(engine: str) -> CollectorConfigResponse:
    snapshot = default_snapshot(engine)
    return CollectorConfigResponse(**snapshot.to_dict(), source="default")


@router.get("/", response_model=list[CollectorConfigResponse])
async def list_collectors(db: AsyncSession = Depends(get_db)) -> list[CollectorConfigResponse]:
    rows = {r.engine: r for r in (await db.execute(select(CollectorConfig))).scalars().all()}
    engines = sorted(set(DEFAULT_CHAINS) | set(rows))
    return [_from_row(rows[e]) if e in rows else _from_default(e) for e in engines]


@router.get("/{engine}", response_model=CollectorConfigResponse)
async def get_collector(engine: str, db: AsyncSession = Depends(get_db)) -> CollectorConfigResponse:
    engine = _canonical_engine(engine)
    row = await db.get(CollectorConfig, engine)
    return _from_row(row) if row is not None else _from_default(engine)


@router.put("/{engine}", response_model=CollectorConfigResponse)
async def replace_collector(
    engine: str,
    body: CollectorConfigUpdate,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> CollectorConfigResponse:
    engine = _canonical_engine(engine)
    row = await db.run_sync(
        apply_collector_config,
        engine,
        [p.model_dump() for p in body.providers],
        body.max_concurrency,
        body.enabled,
        body.updated_by,
    )
    await redis.delete(collector_cache_key(engine))
    return _from_row(row)


@router.get("/{engine}/health", response_model=CollectorHealthResponse)
async def collector_health(
    engine: str,
    redis: Redis = Depends(get_redis),
) -> CollectorHealthResponse:
    engine = _canonical_engine(engine)
    raw = await redis.hgetall(health_key(engine))
    return CollectorHealthResponse(engine=engine, providers=parse_health(raw))
