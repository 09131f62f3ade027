"""Tests for the provider registry, error classification and the simulated provider."""

import httpx
import pytest

from collection.defaults import DEFAULT_CHAINS
from models.enums import ErrorKind
from providers.base import CollectRequest, ProviderSpec
from providers.errors import HardProviderError, TransientProviderError, classify_exception
from providers.registry import available_providers, get_provider
from providers.simulated import SimulatedProvider

REQUEST = CollectRequest(query_id="q-1", query_text="hello", engine="chatgpt", brand_id="brand-1")


def test_every_default_chain_entry_is_registered():
    registered = set(available_providers())
    for engine, chain in DEFAULT_CHAINS.items():
        for entry in chain:
            assert entry["name"] in registered, f"{engine} references {entry['name']}"


def test_unknown_provider_raises():
    with pytest.raises(ValueError):
        get_provider("carrier_pigeon")


def test_async_flag():
    assert get_provider("brightdata_chatgpt").is_async
    assert not get_provider("openrouter_claude").is_async


@pytest.mark.parametrize("exc, kind", [
    (httpx.ConnectError("refused"), ErrorKind.TRANSIENT),
    (httpx.ReadTimeout("slow"), ErrorKind.TRANSIENT),
    (TimeoutError(), ErrorKind.TRANSIENT),
    (KeyError("choices"), ErrorKind.HARD),
    (HardProviderError("bad key", "p"), ErrorKind.HARD),
    (TransientProviderError("busy", "p"), ErrorKind.TRANSIENT),
])
def test_classify_exception(exc, kind):
    assert classify_exception(exc, "p").kind == kind


def test_simulated_answers():
    spec = ProviderSpec(name="simulated", options={"answer": "canned", "citations": ["https://x.example"]})
    answer = SimulatedProvider().collect(REQUEST, spec)
    assert answer.answer == "canned"
    assert answer.citations == ["https://x.example"]


@pytest.mark.parametrize("fail_with, error", [
    ("hard", HardProviderError),
    ("transient", TransientProviderError),
])
def test_simulated_failures(fail_with, error):
    with pytest.raises(error):
        SimulatedProvider().collect(REQUEST, ProviderSpec(name="simulated", options={"fail_with": fail_with}))


def test_simulated_delay_beyond_timeout_is_transient():
    spec = ProviderSpec(name="simulated", timeout_seconds=0.01, options={"delay": 5})
    with pytest.raises(TransientProviderError):
        SimulatedProvider().collect(REQUEST, spec)


def test_simulated_async_handle_and_poll():
    provider = SimulatedProvider()
    answer = provider.collect(REQUEST, ProviderSpec(name="simulated", options={"async": True}))
    assert answer.is_pending

    assert provider.poll(answer.handle, ProviderSpec(name="simulated", options={"poll_result": "pending"})) is None
    polled = provider.poll(answer.handle, ProviderSpec(name="simulated"))
    assert polled.is_usable
