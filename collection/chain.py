"""
Collector provider chain: which providers serve an engine, in which order.

Lookup order for an engine's config:

    1. Redis cache        answercollector:collector:<engine>   (short TTL)
    2. Postgres           collector_configs row
    3. Built-in defaults  collection/defaults.py

The result is a CollectorSnapshot: a frozen copy taken once per dispatch.
The execution engine walks that snapshot for every query of the dispatch,
so an operator editing the chain mid-run changes the NEXT dispatch, never
the one in flight.

Updates go through apply_collector_config(), which replaces the row,
bumps its version and is followed by a cache delete so every process picks
the new chain up on its next snapshot.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from redis import Redis
from sqlalchemy.orm import Session

from collection.defaults import DEFAULT_CHAINS
from config.settings import settings
from models.base import utcnow
from models.collector_config import CollectorConfig
from providers.base import ProviderSpec

logger = logging.getLogger(__name__)


def collector_cache_key(engine: str) -> str:
    # Shared with api/routers/collectors.py
    return settings.redis_key("collector", engine)


@dataclass(frozen=True)
class CollectorSnapshot:
    engine: str
    providers: tuple[ProviderSpec, ...] = ()
    max_concurrency: int = settings.DEFAULT_ENGINE_CONCURRENCY
    enabled: bool = True
    version: int = 0
    source: str = field(default="default", compare=False)

    @property
    def enabled_providers(self) -> list[ProviderSpec]:
        """Enabled providers, lowest priority number first. Ties keep config order."""
        if not self.enabled:
            return []
        return sorted((p for p in self.providers if p.enabled), key=lambda p: p.priority)

    def find(self, provider_name: str) -> Optional[ProviderSpec]:
        for spec in self.providers:
            if spec.name == provider_name:
                return spec
        return None

    def to_dict(self) -> dict:
        return {
            "engine": self.engine,
            "providers": [p.to_dict() for p in self.providers],
            "max_concurrency": self.max_concurrency,
            "enabled": self.enabled,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict, source: str) -> "CollectorSnapshot":
        return cls(
            engine=data["engine"],
            providers=tuple(ProviderSpec.from_dict(p) for p in data.get("providers") or []),
            max_concurrency=max(1, int(data.get("max_concurrency") or settings.DEFAULT_ENGINE_CONCURRENCY)),
            enabled=bool(data.get("enabled", True)),
            version=int(data.get("version") or 0),
            source=source,
        )


def default_snapshot(engine: str) -> CollectorSnapshot:
    return CollectorSnapshot.from_dict(
        {"engine": engine, "providers": DEFAULT_CHAINS.get(engine, []), "version": 0},
        source="default",
    )


def snapshot_from_row(row: CollectorConfig) -> CollectorSnapshot:
    return CollectorSnapshot.from_dict(
        {
            "engine": row.engine,
            "providers": row.providers,
            "max_concurrency": row.max_concurrency,
            "enabled": row.enabled,
            "version": row.version,
        },
        source="database",
    )


def apply_collector_config(
    session: Session,
    engine: str,
    providers: list[dict],
    max_concurrency: int,
    enabled: bool = True,
    updated_by: Optional[str] = None,
) -> CollectorConfig:
    """
    Replace an engine's chain (insert when missing) and bump its version.

    The caller must invalidate the cache key afterwards; this function only
    touches the database so it can run inside AsyncSession.run_sync().
    """
    row = session.get(CollectorConfig, engine)
    if row is None:
        row = CollectorConfig(engine=engine, version=0)
        session.add(row)

    row.providers = [ProviderSpec.from_dict(p).to_dict() for p in providers]
    row.max_concurrency = max_concurrency
    row.enabled = enabled
    row.updated_by = updated_by
    row.updated_at = utcnow()
    row.version = (row.version or 0) + 1
    session.commit()

    logger.info(f"Collector config for {engine} updated to v{row.version} by {updated_by or 'unknown'}")
    return row


class CollectorChain:
    """Read-through access to collector configs for worker threads."""

    def __init__(self, redis_client: Redis, db_session_factory):
        self._redis = redis_client
        self._db_session_factory = db_session_factory

    def snapshot(self, engine: str) -> CollectorSnapshot:
        key = collector_cache_key(engine)
        cached = self._redis.get(key)
        if cached:
            data = json.loads(cached)
            return CollectorSnapshot.from_dict(data, source="cache")

        session: Session = self._db_session_factory()
        try:
            row = session.get(CollectorConfig, engine)
            snapshot = snapshot_from_row(row) if row is not None else default_snapshot(engine)
        finally:
            session.close()

        self._redis.set(key, json.dumps(snapshot.to_dict()), ex=settings.COLLECTOR_CONFIG_CACHE_TTL)
        return snapshot

    def update_collector_config(
        self,
        engine: str,
        providers: list[dict],
        max_concurrency: int,
        enabled: bool = True,
        updated_by: Optional[str] = None,
    ) -> CollectorSnapshot:
        session: Session = self._db_session_factory()
        try:
            row = apply_collector_config(session, engine, providers, max_concurrency, enabled, updated_by)
            snapshot = snapshot_from_row(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        self._redis.delete(collector_cache_key(engine))
        return snapshot
