"""
OpenAI-compatible chat-completions providers.

One class, several configured instances. OpenAI, Groq and OpenRouter all
speak the same /chat/completions dialect, they only differ in base URL,
credentials and default model:

    openai_direct          → api.openai.com           (chatgpt)
    groq_chatgpt           → api.groq.com             (chatgpt)
    openrouter_claude      → openrouter.ai            (claude)
    openrouter_perplexity  → openrouter.ai            (perplexity)

The API key and default model are read from settings at call time, by
setting name, so a key added to the environment is picked up without
rebuilding the registry. spec.options["model"] overrides the default model.

Citations: Perplexity-style models return a top-level "citations" list;
web-search enabled models return url_citation annotations on the message.
Both are collected.
"""

import logging
from typing import Optional

import httpx

from config.settings import settings
from providers.base import CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import ProviderUnavailable, TransientProviderError
from providers.http_client import HttpProvider, unique_urls

logger = logging.getLogger(__name__)


class ChatCompletionsProvider(HttpProvider):

    def __init__(
        self,
        name: str,
        base_url: str,
        key_setting: str,
        model_setting: str,
        extra_headers: Optional[dict] = None,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(client)
        self._name = name
        self._base_url = base_url.rstrip("/")
        self._key_setting = key_setting
        self._model_setting = model_setting
        self._extra_headers = extra_headers or {}

    @property
    def provider_name(self) -> str:
        return self._name

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        api_key = getattr(settings, self._key_setting)
        if not api_key:
            raise ProviderUnavailable(f"{self._name}: {self._key_setting} not configured", self._name)

        model = spec.options.get("model") or getattr(settings, self._model_setting)
        messages = []
        if spec.options.get("system_prompt"):
            messages.append({"role": "system", "content": spec.options["system_prompt"]})
        messages.append({"role": "user", "content": request.query_text})

        body = self._request(
            "POST",
            f"{self._base_url}/chat/completions",
            spec,
            headers={"Authorization": f"Bearer {api_key}", **self._extra_headers},
            json={"model": model, "messages": messages},
        )

        choices = body.get("choices") or []
        message = choices[0].get("message", {}) if choices else {}
        content = message.get("content")
        if not content or not str(content).strip():
            raise TransientProviderError(f"{self._name}: empty answer from {model}", self._name)

        annotations = [
            a.get("url_citation", {}) for a in message.get("annotations") or []
            if a.get("type") == "url_citation"
        ]
        citations = unique_urls([*(body.get("citations") or []), *annotations])

        logger.debug(f"{self._name} answered query {request.query_id} ({len(content)} chars)")
        return ProviderAnswer(answer=content, citations=citations, model=body.get("model") or model)


def build_chat_completion_providers() -> list[ChatCompletionsProvider]:
    openrouter_headers = {"HTTP-Referer": "https://answercollector.local", "X-Title": "answer-collector"}
    return [
        ChatCompletionsProvider(
            "openai_direct", "https://api.openai.com/v1", "OPENAI_API_KEY", "OPENAI_MODEL",
        ),
        ChatCompletionsProvider(
            "groq_chatgpt", "https://api.groq.com/openai/v1", "GROQ_API_KEY", "GROQ_MODEL",
        ),
        ChatCompletionsProvider(
            "openrouter_claude", "https://openrouter.ai/api/v1", "OPENROUTER_API_KEY",
            "OPENROUTER_CLAUDE_MODEL", extra_headers=openrouter_headers,
        ),
        ChatCompletionsProvider(
            "openrouter_perplexity", "https://openrouter.ai/api/v1", "OPENROUTER_API_KEY",
            "OPENROUTER_PERPLEXITY_MODEL", extra_headers=openrouter_headers,
        ),
    ]
