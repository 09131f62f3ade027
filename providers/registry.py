"""
Provider registry: maps provider names to provider instances.

A collector config only stores provider NAMES ("openrouter_claude",
"brightdata_chatgpt", ...). When the execution engine walks a chain it
needs the actual provider object. This registry does that lookup.

Providers are instantiated once and reused; they hold an httpx.Client
(thread-safe) and no per-request state.
"""

from providers.base import AbstractProvider
from providers.brightdata import build_brightdata_providers
from providers.chat_completions import build_chat_completion_providers
from providers.gemini import GeminiProvider
from providers.serpapi import build_serpapi_providers
from providers.simulated import SimulatedProvider

_REGISTRY: dict[str, AbstractProvider] = {}


def register_provider(provider: AbstractProvider) -> None:
    _REGISTRY[provider.provider_name] = provider


def _register_defaults() -> None:
    for provider in [
        *build_chat_completion_providers(),
        GeminiProvider(),
        *build_serpapi_providers(),
        *build_brightdata_providers(),
        SimulatedProvider(),
    ]:
        register_provider(provider)


_register_defaults()


def get_provider(name: str) -> AbstractProvider:
    """Look up a provider by name. Raises ValueError if unknown."""
    provider = _REGISTRY.get(name)
    if provider is None:
        raise ValueError(
            f"Unknown provider: '{name}'. Available: {list(_REGISTRY.keys())}"
        )
    return provider


def available_providers() -> list[str]:
    return sorted(_REGISTRY)
