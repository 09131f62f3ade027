"""
Shared HTTP plumbing for providers that talk to a JSON API over httpx.

Each provider gets an httpx.Client. Production code lets the provider
create its own; tests pass a client built on httpx.MockTransport so no
request ever leaves the process.

The per-call timeout comes from the chain entry (ProviderSpec.timeout_seconds),
not from the client, so two chains can run the same provider with
different budgets.
"""

import logging
from typing import Any, Optional

import httpx

from providers.base import AbstractProvider, ProviderSpec
from providers.errors import (
    TransientProviderError,
    classify_exception,
    raise_for_provider_status,
)

logger = logging.getLogger(__name__)


class HttpProvider(AbstractProvider):

    def __init__(self, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client()

    def _request(self, method: str, url: str, spec: ProviderSpec, **kwargs: Any) -> Any:
        """Send one request and return the decoded JSON body, or raise a ProviderError."""
        try:
            response = self._client.request(method, url, timeout=spec.timeout_seconds, **kwargs)
        except Exception as e:
            raise classify_exception(e, self.provider_name) from e

        raise_for_provider_status(response, self.provider_name)

        try:
            return response.json()
        except ValueError as e:
            raise TransientProviderError(
                f"{self.provider_name}: response was not JSON", self.provider_name
            ) from e


def unique_urls(candidates) -> list[str]:
    """Keep http(s) URLs only, first occurrence wins."""
    seen: list[str] = []
    for item in candidates:
        if isinstance(item, dict):
            item = item.get("url") or item.get("link") or item.get("uri") or item.get("href")
        if isinstance(item, str) and item.startswith(("http://", "https://")) and item not in seen:
            seen.append(item)
    return seen
