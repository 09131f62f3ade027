"""
Provider error taxonomy.

Every provider failure ends up as one of two kinds:

    TransientProviderError  timeout, rate limit, 5xx, network trouble,
                            provider not configured, empty answer
                            → eligible for fallback to the next provider
    HardProviderError       auth rejected, malformed request, anything
                            we don't recognise
                            → the result fails without trying further

Unknown errors are hard on purpose: falling through on a bug in our own
request building would just repeat the bug against every provider.
"""

import httpx

from models.enums import ErrorKind


class ProviderError(Exception):
    kind = ErrorKind.HARD

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    kind = ErrorKind.TRANSIENT


class ProviderUnavailable(TransientProviderError):
    """The provider has no credentials or dataset configured."""


class HardProviderError(ProviderError):
    kind = ErrorKind.HARD


_TRANSIENT_STATUSES = {408, 425, 429}


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the right ProviderError for a non-2xx response. No-op on success."""
    status = response.status_code
    if status < 400:
        return

    body = response.text[:300]
    if status in (401, 403):
        raise HardProviderError(f"{provider}: authentication rejected ({status})", provider, status)
    if status in _TRANSIENT_STATUSES or status >= 500:
        raise TransientProviderError(f"{provider}: HTTP {status} {body}", provider, status)
    raise HardProviderError(f"{provider}: HTTP {status} {body}", provider, status)


def classify_exception(exc: Exception, provider: str) -> ProviderError:
    """Map any exception raised while talking to a provider onto the taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return TransientProviderError(f"{provider}: timed out", provider)
    if isinstance(exc, httpx.TransportError):
        return TransientProviderError(f"{provider}: network error: {exc}", provider)
    if isinstance(exc, TimeoutError):
        return TransientProviderError(f"{provider}: timed out", provider)
    return HardProviderError(f"{provider}: {type(exc).__name__}: {exc}", provider)
