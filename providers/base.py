"""
Abstract base classes for answer-engine providers.

A provider is one concrete way of getting an answer out of an answer
engine: a direct API, a scraping service, a SERP API. Several providers can
serve the same engine, and the collector chain (collection/chain.py) decides
in which order they are tried.

Same Strategy pattern as the job-type handlers:
- AbstractProvider = interface (synchronous answer)
- AsyncProvider = interface for providers that hand back a handle first
  and deliver the answer later (polled by the result sweep)
- ChatCompletionsProvider, GeminiProvider, ... = implementations
- registry.py = factory lookup by provider name

To add a new provider:
1. Create a class that inherits AbstractProvider (or AsyncProvider)
2. Implement collect() and provider_name
3. Add it to the registry
4. Reference its name from a collector config

Providers signal failure ONLY by raising from providers/errors.py:
- TransientProviderError → the chain may fall through to the next provider
- HardProviderError → the execution result fails immediately
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from config.settings import settings


@dataclass(frozen=True)
class ProviderSpec:
    """One entry of a collector chain, as stored in CollectorConfig.providers."""

    name: str
    priority: int = 1
    enabled: bool = True
    timeout_seconds: float = settings.DEFAULT_PROVIDER_TIMEOUT
    fallback_on_failure: bool = True
    options: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderSpec":
        return cls(
            name=data["name"],
            priority=int(data.get("priority", 1)),
            enabled=bool(data.get("enabled", True)),
            timeout_seconds=float(data.get("timeout_seconds") or settings.DEFAULT_PROVIDER_TIMEOUT),
            fallback_on_failure=bool(data.get("fallback_on_failure", True)),
            options=dict(data.get("options") or {}),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "priority": self.priority,
            "enabled": self.enabled,
            "timeout_seconds": self.timeout_seconds,
            "fallback_on_failure": self.fallback_on_failure,
            "options": dict(self.options),
        }


@dataclass(frozen=True)
class CollectRequest:
    """What a provider needs to ask one query against one engine."""

    query_id: str
    query_text: str
    engine: str
    brand_id: str
    locale: Optional[str] = None
    country: Optional[str] = None


@dataclass
class ProviderAnswer:
    """
    What a provider hands back.

    Either answer is set (synchronous result), or only handle is set
    (async provider accepted the request and will deliver later).
    """

    answer: Optional[str] = None
    citations: list[str] = field(default_factory=list)
    handle: Optional[str] = None
    model: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.answer and self.answer.strip())

    @property
    def is_pending(self) -> bool:
        return not self.is_usable and self.handle is not None


class AbstractProvider(ABC):

    @abstractmethod
    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        """
        Ask one query.

        Args:
            request: query text plus locale/country for one engine.
            spec: the chain entry this call runs under. spec.timeout_seconds
                  bounds the call; spec.options carries provider-specific knobs.

        Returns:
            ProviderAnswer with either an answer or an async handle.

        Raises:
            TransientProviderError / HardProviderError.
        """
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name referenced from collector configs (e.g., 'openrouter_claude')."""
        ...

    @property
    def is_async(self) -> bool:
        return False


class AsyncProvider(AbstractProvider):

    @abstractmethod
    def poll(self, handle: str, spec: ProviderSpec) -> Optional[ProviderAnswer]:
        """
        Check on a previously returned handle.

        Returns None while the provider is still working on it.
        Raises HardProviderError when the handle can never produce an answer.
        """
        ...

    @property
    def is_async(self) -> bool:
        return True
