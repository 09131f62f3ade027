"""Tests for the /health endpoint."""

import json

import pytest

from scheduler.engine import ready_queue_key


@pytest.mark.asyncio
async def test_health_check(client):
    """GET /health should return healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["ready_queue_depth"] == 0


@pytest.mark.asyncio
async def test_health_reports_ready_queue_depth(client, fake_redis):
    await fake_redis.rpush(ready_queue_key(), json.dumps({"run_id": "a", "job_type": "collection"}))
    await fake_redis.rpush(ready_queue_key(), json.dumps({"run_id": "b", "job_type": "scoring"}))

    response = await client.get("/health")
    assert response.json()["ready_queue_depth"] == 2
