"""
Per-engine provider health, kept in a Redis hash.

    answercollector:health:<engine>
        <provider>:success       counter
        <provider>:failure       counter
        <provider>:last_outcome  completed | pending | transient | hard
        <provider>:last_error    last error message (cleared on success)
        <provider>:last_at       ISO timestamp of the last attempt

Updated after every provider attempt. Read by GET /collectors/{engine}/health.
Health is informational only; chain order is never changed automatically.
"""

from typing import Optional

from redis import Redis

from config.settings import settings
from models.base import utcnow


def health_key(engine: str) -> str:
    return settings.redis_key("health", engine)


def parse_health(raw: dict) -> dict[str, dict]:
    """Turn the flat hash into {provider: {success, failure, last_outcome, ...}}."""
    providers: dict[str, dict] = {}
    for field, value in raw.items():
        field = field.decode() if isinstance(field, bytes) else field
        value = value.decode() if isinstance(value, bytes) else value
        provider, _, attr = field.rpartition(":")
        entry = providers.setdefault(provider, {"success": 0, "failure": 0})
        entry[attr] = int(value) if attr in ("success", "failure") else value
    return providers


class ProviderHealthTracker:

    def __init__(self, redis_client: Redis):
        self._redis = redis_client

    def record(self, engine: str, provider: str, outcome: str, error: Optional[str] = None) -> None:
        key = health_key(engine)
        counter = "failure" if outcome in ("transient", "hard") else "success"
        pipe = self._redis.pipeline()
        pipe.hincrby(key, f"{provider}:{counter}", 1)
        pipe.hset(key, mapping={
            f"{provider}:last_outcome": outcome,
            f"{provider}:last_error": (error or "")[:500],
            f"{provider}:last_at": utcnow().isoformat(),
        })
        pipe.execute()

    def read(self, engine: str) -> dict[str, dict]:
        return parse_health(self._redis.hgetall(health_key(engine)))
