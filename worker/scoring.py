"""
Scoring collaborator: the service that turns collected answers into
positions and sentiment.

Scoring algorithms are someone else's problem. This module only defines
the seam (ScoringCollaborator) and the default HTTP client for it:

    POST {SCORING_SERVICE_URL}/api/scoring/brands/{brand_id}/score
    {"customer_id": "...", "since": "2026-01-01T00:00:00+00:00" | null}
    → {"positions_processed": 12, "sentiments_processed": 12}
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import httpx

from config.settings import settings

logger = logging.getLogger(__name__)


class ScoringError(Exception):
    pass


@dataclass
class ScoringResult:
    positions_processed: int = 0
    sentiments_processed: int = 0

    def as_metrics(self) -> dict:
        return {
            "positions_processed": self.positions_processed,
            "sentiments_processed": self.sentiments_processed,
        }


class ScoringCollaborator(Protocol):

    def score_brand(self, brand_id: str, customer_id: str, since: Optional[datetime]) -> ScoringResult:
        ...


class HttpScoringClient:

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None):
        self._base_url = (base_url or settings.SCORING_SERVICE_URL).rstrip("/")
        self._client = client or httpx.Client(timeout=settings.SCORING_TIMEOUT)

    def score_brand(self, brand_id: str, customer_id: str, since: Optional[datetime]) -> ScoringResult:
        url = f"{self._base_url}/api/scoring/brands/{brand_id}/score"
        try:
            response = self._client.post(url, json={
                "customer_id": customer_id,
                "since": since.isoformat() if since else None,
            })
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ScoringError(f"Scoring request for brand {brand_id} failed: {e}") from e
        except ValueError as e:
            raise ScoringError(f"Scoring response for brand {brand_id} was not JSON") from e

        result = ScoringResult(
            positions_processed=int(body.get("positions_processed", 0)),
            sentiments_processed=int(body.get("sentiments_processed", 0)),
        )
        logger.info(f"Scored brand {brand_id}: {result.as_metrics()}")
        return result
