"""
BrightData dataset providers: asynchronous, snapshot based.

How it works:
    1. collect() POSTs the prompt to /datasets/v3/trigger for the engine's
       dataset and gets back a snapshot_id. No answer yet.
    2. The execution result is left `running` with provider_handle = snapshot_id.
    3. The result sweep (collection/sweep.py) calls poll(snapshot_id) until
       the snapshot is ready, then completes or fails the result.

    Engine          Target page
    chatgpt         https://chatgpt.com/
    perplexity      https://www.perplexity.ai/
    gemini          https://gemini.google.com/
    grok            https://grok.com/
    google_aio      https://www.google.com/
    bing_copilot    https://copilot.microsoft.com/

A snapshot that is still building answers 202 (or a {"status": "running"}
body). A finished snapshot is a list of records with answer_text and
citations.
"""

import logging
import re
from typing import Optional

import httpx

from config.settings import settings
from providers.base import AsyncProvider, CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import (
    HardProviderError,
    ProviderUnavailable,
    TransientProviderError,
    classify_exception,
    raise_for_provider_status,
)
from providers.http_client import HttpProvider, unique_urls

logger = logging.getLogger(__name__)

BRIGHTDATA_URL = "https://api.brightdata.com/datasets/v3"

TARGET_URLS = {
    "chatgpt": "https://chatgpt.com/",
    "perplexity": "https://www.perplexity.ai/",
    "gemini": "https://gemini.google.com/",
    "grok": "https://grok.com/",
    "google_aio": "https://www.google.com/",
    "bing_copilot": "https://copilot.microsoft.com/",
}

_PENDING_STATES = {"running", "building", "starting", "collecting"}
_TAG_RE = re.compile(r"<[^>]+>")


def _extract_answer(record: dict) -> str:
    answer = record.get("answer_text") or record.get("answer") or record.get("response") or ""
    if not answer and record.get("answer_section_html"):
        answer = _TAG_RE.sub("", record["answer_section_html"])
    return str(answer).strip()


class BrightDataProvider(HttpProvider, AsyncProvider):

    def __init__(self, engine: str, client: Optional[httpx.Client] = None):
        super().__init__(client)
        self._engine = engine

    @property
    def provider_name(self) -> str:
        return f"brightdata_{self._engine}"

    def _headers(self) -> dict:
        if not settings.BRIGHTDATA_API_KEY:
            raise ProviderUnavailable(f"{self.provider_name}: BRIGHTDATA_API_KEY not configured", self.provider_name)
        return {"Authorization": f"Bearer {settings.BRIGHTDATA_API_KEY}"}

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        headers = self._headers()
        dataset_id = spec.options.get("dataset_id") or settings.BRIGHTDATA_DATASETS.get(self._engine)
        if not dataset_id:
            raise ProviderUnavailable(f"{self.provider_name}: no dataset configured", self.provider_name)

        body = self._request(
            "POST",
            f"{BRIGHTDATA_URL}/trigger",
            spec,
            headers=headers,
            params={"dataset_id": dataset_id, "include_errors": "true", "notify": "false"},
            json={"input": [{
                "url": TARGET_URLS.get(self._engine, ""),
                "prompt": request.query_text,
                "country": request.country or "",
                "web_search": True,
            }]},
        )

        snapshot_id = None
        if isinstance(body, dict):
            snapshot_id = body.get("snapshot_id") or (body.get("snapshot_ids") or [None])[0]
        elif isinstance(body, list) and body:
            snapshot_id = body[0].get("snapshot_id")
        if not snapshot_id:
            raise TransientProviderError(f"{self.provider_name}: trigger returned no snapshot_id", self.provider_name)

        logger.info(f"{self.provider_name} triggered snapshot {snapshot_id} for query {request.query_id}")
        return ProviderAnswer(handle=snapshot_id)

    def poll(self, handle: str, spec: ProviderSpec) -> Optional[ProviderAnswer]:
        headers = self._headers()
        try:
            response = self._client.get(
                f"{BRIGHTDATA_URL}/snapshot/{handle}",
                params={"format": "json"},
                headers=headers,
                timeout=spec.timeout_seconds,
            )
        except Exception as e:
            raise classify_exception(e, self.provider_name) from e

        if response.status_code == 202:
            return None
        raise_for_provider_status(response, self.provider_name)

        try:
            body = response.json()
        except ValueError:
            return None

        if isinstance(body, dict):
            state = str(body.get("status", "")).lower()
            if state in _PENDING_STATES:
                return None
            if state == "failed":
                raise HardProviderError(f"{self.provider_name}: snapshot {handle} failed", self.provider_name)
            records = body.get("data") if isinstance(body.get("data"), list) else [body]
        else:
            records = body

        if not records:
            return None
        record = records[0]
        if record.get("error"):
            raise HardProviderError(f"{self.provider_name}: {record['error']}", self.provider_name)

        answer = _extract_answer(record)
        if not answer:
            return None

        citations = unique_urls(record.get("citations") or record.get("links_attached") or [])
        return ProviderAnswer(answer=answer, citations=citations, handle=handle, model=self._engine)


def build_brightdata_providers() -> list[BrightDataProvider]:
    return [BrightDataProvider(engine) for engine in TARGET_URLS]
