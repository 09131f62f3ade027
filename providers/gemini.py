"""Google Gemini direct provider (generateContent with Google Search grounding)."""

import logging
from typing import Optional

import httpx

from config.settings import settings
from providers.base import CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import ProviderUnavailable, TransientProviderError
from providers.http_client import HttpProvider, unique_urls

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(HttpProvider):

    def __init__(self, client: Optional[httpx.Client] = None):
        super().__init__(client)

    @property
    def provider_name(self) -> str:
        return "google_gemini_direct"

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        if not settings.GOOGLE_GEMINI_API_KEY:
            raise ProviderUnavailable(
                f"{self.provider_name}: GOOGLE_GEMINI_API_KEY not configured", self.provider_name
            )

        model = spec.options.get("model") or settings.GOOGLE_GEMINI_MODEL
        body = self._request(
            "POST",
            f"{GEMINI_BASE_URL}/models/{model}:generateContent",
            spec,
            params={"key": settings.GOOGLE_GEMINI_API_KEY},
            json={
                "contents": [{"parts": [{"text": request.query_text}]}],
                "tools": [{"google_search": {}}],
            },
        )

        candidates = body.get("candidates") or []
        if not candidates:
            raise TransientProviderError(f"{self.provider_name}: no candidates returned", self.provider_name)

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        answer = "".join(p.get("text", "") for p in parts).strip()
        if not answer:
            raise TransientProviderError(f"{self.provider_name}: empty answer", self.provider_name)

        chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
        citations = unique_urls((c.get("web") or {}).get("uri") for c in chunks)
        return ProviderAnswer(answer=answer, citations=citations, model=model)
