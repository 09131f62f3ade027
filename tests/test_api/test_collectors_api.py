"""API integration tests for /collectors endpoints."""

import json

import pytest

from collection.chain import collector_cache_key
from collection.defaults import DEFAULT_CHAINS
from collection.health import health_key


@pytest.mark.asyncio
async def test_list_collectors_shows_builtin_chains(client):
    response = await client.get("/collectors/")
    assert response.status_code == 200
    data = response.json()
    assert [c["engine"] for c in data] == sorted(DEFAULT_CHAINS)
    assert all(c["source"] == "default" for c in data)
    assert all(c["version"] == 0 for c in data)


@pytest.mark.asyncio
async def test_get_default_collector(client):
    response = await client.get("/collectors/claude")
    assert response.status_code == 200
    data = response.json()
    assert data["source"] == "default"
    assert [p["name"] for p in data["providers"]] == ["openrouter_claude"]
    assert data["providers"][0]["fallback_on_failure"] is False


@pytest.mark.asyncio
async def test_put_replaces_chain_and_clears_cache(client, fake_redis):
    await fake_redis.set(collector_cache_key("chatgpt"), json.dumps({"engine": "chatgpt"}))

    response = await client.put("/collectors/chatgpt", json={
        "providers": [{"name": "simulated", "timeout_seconds": 5}],
        "max_concurrency": 3,
        "updated_by": "ops@example.com",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["version"] == 1
    assert data["source"] == "database"
    assert data["max_concurrency"] == 3
    assert data["providers"][0]["name"] == "simulated"
    assert await fake_redis.get(collector_cache_key("chatgpt")) is None

    again = (await client.put("/collectors/chatgpt", json={"providers": [{"name": "simulated"}]})).json()
    assert again["version"] == 2

    listed = {c["engine"]: c for c in (await client.get("/collectors/")).json()}
    assert listed["chatgpt"]["source"] == "database"
    assert listed["grok"]["source"] == "default"


@pytest.mark.asyncio
async def test_put_accepts_engine_alias(client):
    response = await client.put("/collectors/openai", json={"providers": [{"name": "simulated"}]})
    assert response.status_code == 200
    assert response.json()["engine"] == "chatgpt"

    stored = (await client.get("/collectors/chatgpt")).json()
    assert stored["version"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"providers": [{"name": "no_such_provider"}]},
    {"providers": []},
    {"providers": [{"name": "simulated", "timeout_seconds": 0}]},
    {"providers": [{"name": "simulated"}], "max_concurrency": 0},
])
async def test_put_validation(client, body):
    response = await client.put("/collectors/chatgpt", json=body)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_engine(client):
    assert (await client.get("/collectors/altavista")).status_code == 404
    response = await client.put("/collectors/altavista", json={"providers": [{"name": "simulated"}]})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_collector_health(client, fake_redis):
    await fake_redis.hset(health_key("chatgpt"), mapping={
        "brightdata_chatgpt:success": 4,
        "brightdata_chatgpt:failure": 1,
        "brightdata_chatgpt:last_outcome": "transient",
        "brightdata_chatgpt:last_error": "Provider returned HTTP 503",
    })

    response = await client.get("/collectors/chatgpt/health")
    assert response.status_code == 200
    data = response.json()
    assert data["engine"] == "chatgpt"
    health = data["providers"]["brightdata_chatgpt"]
    assert health["success"] == 4
    assert health["failure"] == 1
    assert health["last_outcome"] == "transient"
    assert health["last_error"] == "Provider returned HTTP 503"


@pytest.mark.asyncio
async def test_collector_health_empty(client):
    response = await client.get("/collectors/gemini/health")
    assert response.json() == {"engine": "gemini", "providers": {}}
