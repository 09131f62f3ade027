"""Tests for the HTTP scoring client, on httpx.MockTransport."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from worker.scoring import HttpScoringClient, ScoringError


def _client(handler):
    return HttpScoringClient(
        base_url="http://scoring.test/",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_score_brand_posts_and_parses():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"positions_processed": 7, "sentiments_processed": 6})

    since = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    result = _client(handler).score_brand("brand-1", "cust-1", since)

    assert seen["url"] == "http://scoring.test/api/scoring/brands/brand-1/score"
    assert seen["body"] == {"customer_id": "cust-1", "since": "2026-03-02T09:00:00+00:00"}
    assert result.as_metrics() == {"positions_processed": 7, "sentiments_processed": 6}


def test_error_status_raises_scoring_error():
    with pytest.raises(ScoringError):
        _client(lambda request: httpx.Response(502, text="bad gateway")).score_brand("brand-1", "cust-1", None)


def test_non_json_raises_scoring_error():
    with pytest.raises(ScoringError):
        _client(lambda request: httpx.Response(200, text="ok")).score_brand("brand-1", "cust-1", None)
