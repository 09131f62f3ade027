"""
Simulated provider.

This is the most useful provider for demos and testing because:
- You control exactly how long it takes (delay option)
- You control whether and how it fails (fail_with / fail_probability)
- You can make it behave like an async provider (async option)

Example chain entries:
    {"name": "simulated", "options": {"delay": 0.5}}
        → answers after half a second
    {"name": "simulated", "options": {"fail_with": "transient"}}
        → always times out, chain falls through to the next provider
    {"name": "simulated", "options": {"fail_with": "hard"}}
        → always rejected, result fails immediately
    {"name": "simulated", "options": {"fail_probability": 0.3}}
        → transient failure 30% of the time
    {"name": "simulated", "options": {"async": true}}
        → returns a handle; the sweep's poll() then delivers the answer
"""

import random
import time
import uuid
from typing import Optional

from providers.base import AsyncProvider, CollectRequest, ProviderAnswer, ProviderSpec
from providers.errors import HardProviderError, TransientProviderError


class SimulatedProvider(AsyncProvider):

    def __init__(self, name: str = "simulated"):
        self._name = name

    @property
    def provider_name(self) -> str:
        return self._name

    def _maybe_fail(self, options: dict) -> None:
        fail_with = options.get("fail_with")
        if fail_with == "hard":
            raise HardProviderError(f"{self._name}: simulated hard failure", self._name, 401)
        if fail_with == "transient":
            raise TransientProviderError(f"{self._name}: simulated timeout", self._name)
        if random.random() < float(options.get("fail_probability", 0.0)):
            raise TransientProviderError(
                f"{self._name}: simulated failure (fail_probability={options['fail_probability']})",
                self._name,
            )

    def collect(self, request: CollectRequest, spec: ProviderSpec) -> ProviderAnswer:
        options = spec.options
        # Fail BEFORE sleeping, no point waiting just to fail
        self._maybe_fail(options)

        delay = float(options.get("delay", 0.0))
        if delay > spec.timeout_seconds:
            time.sleep(spec.timeout_seconds)
            raise TransientProviderError(f"{self._name}: timed out after {spec.timeout_seconds}s", self._name)
        if delay:
            time.sleep(delay)

        if options.get("async"):
            return ProviderAnswer(handle=f"sim-{uuid.uuid4().hex}")

        answer = options.get("answer", f"Simulated {request.engine} answer to: {request.query_text}")
        return ProviderAnswer(
            answer=answer,
            citations=list(options.get("citations", [])),
            model="simulated",
        )

    def poll(self, handle: str, spec: ProviderSpec) -> Optional[ProviderAnswer]:
        outcome = spec.options.get("poll_result", "answer")
        if outcome == "pending":
            return None
        if outcome == "hard":
            raise HardProviderError(f"{self._name}: snapshot {handle} failed", self._name)
        return ProviderAnswer(
            answer=spec.options.get("answer", f"Simulated async answer for {handle}"),
            citations=list(spec.options.get("citations", [])),
            handle=handle,
            model="simulated",
        )
