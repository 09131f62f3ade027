"""
SerpApi providers.

SerpApi returns a rendered answer as a list of text blocks plus a list of
references. Two engines are wired:

    serpapi_bing_copilot  → engine=bing_copilot           (bing_copilot)
    serpapi_google_aio    → engine=google, ai_overview    (google_aio)

A SerpApi response can be HTTP 200 and still carry {"error": "..."}; those
are treated as transient because the common causes are quota and
"no results yet".
"""

import logging
from typing import Optional

import httpx

from config.settings import settings
from providers.base import CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import ProviderUnavailable, TransientProviderError
from providers.http_client import HttpProvider, unique_urls

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"


def _text_from_blocks(blocks: list) -> str:
    lines = []
    for block in blocks:
        if block.get("snippet"):
            lines.append(block["snippet"])
        for item in block.get("list") or []:
            if item.get("snippet"):
                lines.append(f"- {item['snippet']}")
    return "\n".join(lines).strip()


class SerpApiProvider(HttpProvider):

    def __init__(self, name: str, serp_engine: str, answer_key: Optional[str] = None,
                 client: Optional[httpx.Client] = None):
        super().__init__(client)
        self._name = name
        self._serp_engine = serp_engine
        # google nests the AI overview under its own key; bing_copilot is top-level
        self._answer_key = answer_key

    @property
    def provider_name(self) -> str:
        return self._name

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        if not settings.SERPAPI_API_KEY:
            raise ProviderUnavailable(f"{self._name}: SERPAPI_API_KEY not configured", self._name)

        params = {"engine": self._serp_engine, "q": request.query_text, "api_key": settings.SERPAPI_API_KEY}
        if request.country:
            params["gl"] = request.country.lower()
        if request.locale:
            params["hl"] = request.locale.split("-")[0]

        body = self._request("GET", SERPAPI_URL, spec, params=params)
        if body.get("error"):
            raise TransientProviderError(f"{self._name}: {body['error']}", self._name)

        section = (body.get(self._answer_key) or {}) if self._answer_key else body
        answer = _text_from_blocks(section.get("text_blocks") or [])
        if not answer:
            raise TransientProviderError(f"{self._name}: no answer blocks returned", self._name)

        citations = unique_urls(section.get("references") or [])
        return ProviderAnswer(answer=answer, citations=citations, model=self._serp_engine)


def build_serpapi_providers() -> list[SerpApiProvider]:
    return [
        SerpApiProvider("serpapi_bing_copilot", "bing_copilot"),
        SerpApiProvider("serpapi_google_aio", "google", answer_key="ai_overview"),
    ]
