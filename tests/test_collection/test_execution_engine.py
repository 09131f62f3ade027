"""
Tests for the execution engine: provider fallback, hard failures, partial
batches and async handles.

Providers are ScriptedProviders (see conftest.py) plugged in through
provider_lookup, so the chain logic runs exactly as in production without
any HTTP.
"""

import uuid

from sqlalchemy import select

from collection.chain import CollectorChain
from collection.engine import CollectionItem, ExecutionEngine
from collection.health import ProviderHealthTracker
from conftest import ScriptedProvider, provider_lookup
from models.enums import ErrorKind, ExecutionStatus
from models.execution_result import ExecutionResult


def _chain(session_factory, redis, engine, providers, max_concurrency=2, enabled=True):
    chain = CollectorChain(redis, session_factory)
    chain.update_collector_config(engine, providers, max_concurrency, enabled, updated_by="tests")
    return chain


def _items(texts, engines=("chatgpt",), retry_of=None):
    return [
        CollectionItem(
            query_id=uuid.uuid4(),
            query_text=text,
            brand_id="brand-1",
            customer_id="cust-1",
            engines=tuple(engines),
            retry_of=retry_of,
        )
        for text in texts
    ]


def _results(session_factory):
    session = session_factory()
    try:
        return session.execute(select(ExecutionResult)).scalars().all()
    finally:
        session.close()


def test_transient_failure_falls_back_to_next_provider(session_factory, sync_redis):
    primary = ScriptedProvider("primary", default="transient")
    backup = ScriptedProvider("backup")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "primary", "priority": 1},
        {"name": "backup", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(primary, backup))

    summary = engine.execute_queries(None, _items(["q1"]))

    assert (summary.total, summary.succeeded, summary.failed) == (1, 1, 0)
    [result] = _results(session_factory)
    assert result.status == ExecutionStatus.COMPLETED.value
    assert result.provider == "backup"
    assert result.fallback_count == 1
    assert result.raw_answer == "backup says: q1"
    assert [a["provider"] for a in result.attempts] == ["primary", "backup"]
    assert [t["to"] for t in result.status_transitions] == ["pending", "running", "completed"]


def test_priority_decides_order_not_list_position(session_factory, sync_redis):
    first = ScriptedProvider("first")
    second = ScriptedProvider("second")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "second", "priority": 2},
        {"name": "first", "priority": 1},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(first, second))

    engine.execute_queries(None, _items(["q1"]))

    assert first.calls == ["q1"]
    assert second.calls == []


def test_hard_failure_stops_the_chain(session_factory, sync_redis):
    primary = ScriptedProvider("primary", default="hard")
    backup = ScriptedProvider("backup")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "primary", "priority": 1},
        {"name": "backup", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(primary, backup))

    summary = engine.execute_queries(None, _items(["q1"]))

    assert summary.failed == 1
    assert backup.calls == []
    [result] = _results(session_factory)
    assert result.status == ExecutionStatus.FAILED.value
    assert result.error_kind == ErrorKind.HARD.value
    assert "authentication rejected" in result.error_message


def test_fallback_disabled_entry_fails_without_trying_others(session_factory, sync_redis):
    primary = ScriptedProvider("primary", default="transient")
    backup = ScriptedProvider("backup")
    chain = _chain(session_factory, sync_redis, "claude", [
        {"name": "primary", "priority": 1, "fallback_on_failure": False},
        {"name": "backup", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(primary, backup))

    summary = engine.execute_queries(None, _items(["q1"], engines=["claude"]))

    assert summary.failed == 1
    assert backup.calls == []
    assert "does not allow fallback" in _results(session_factory)[0].error_message


def test_exhausted_chain_lists_every_provider_tried(session_factory, sync_redis):
    a = ScriptedProvider("a", default="transient")
    b = ScriptedProvider("b", default="empty")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "a", "priority": 1},
        {"name": "b", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(a, b))

    summary = engine.execute_queries(None, _items(["q1"]))

    assert summary.failed == 1
    [result] = _results(session_factory)
    assert result.error_message == "All providers failed for chatgpt. Tried: a, b"
    assert result.error_kind == ErrorKind.TRANSIENT.value
    assert result.raw_answer is None


def test_disabled_providers_are_skipped(session_factory, sync_redis):
    off = ScriptedProvider("off")
    on = ScriptedProvider("on")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "off", "priority": 1, "enabled": False},
        {"name": "on", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(off, on))

    engine.execute_queries(None, _items(["q1"]))

    assert off.calls == []
    assert _results(session_factory)[0].provider == "on"


def test_engine_with_no_enabled_provider_fails_its_results(session_factory, sync_redis):
    chain = _chain(session_factory, sync_redis, "grok", [{"name": "x"}], enabled=False)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup())

    summary = engine.execute_queries(None, _items(["q1", "q2"], engines=["grok"]))

    assert (summary.total, summary.failed) == (2, 2)
    assert all(r.error_message == "No enabled providers for grok" for r in _results(session_factory))


def test_unknown_provider_name_is_skipped_like_an_unavailable_one(session_factory, sync_redis):
    real = ScriptedProvider("real")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "ghost", "priority": 1},
        {"name": "real", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(real))

    summary = engine.execute_queries(None, _items(["q1"]))

    assert summary.succeeded == 1
    assert _results(session_factory)[0].provider == "real"


def test_partial_batch_failure_keeps_the_successes(session_factory, sync_redis):
    texts = ["q1", "q2", "q3", "q4", "q5"]
    provider = ScriptedProvider("only", script={"q2": "hard", "q4": "hard"})
    chain = _chain(session_factory, sync_redis, "chatgpt", [{"name": "only"}], max_concurrency=3)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(provider))

    summary = engine.execute_queries(None, _items(texts))

    assert (summary.total, summary.succeeded, summary.failed, summary.in_flight) == (5, 3, 2, 0)
    assert len(summary.errors) == 2
    statuses = sorted(r.status for r in _results(session_factory))
    assert statuses == ["completed"] * 3 + ["failed"] * 2


def test_each_engine_gets_its_own_result(session_factory, sync_redis):
    gpt = ScriptedProvider("gpt")
    claude = ScriptedProvider("claude_api")
    chain = CollectorChain(sync_redis, session_factory)
    chain.update_collector_config("chatgpt", [{"name": "gpt"}], 2)
    chain.update_collector_config("claude", [{"name": "claude_api"}], 1)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(gpt, claude))

    summary = engine.execute_queries(None, _items(["q1", "q2"], engines=["chatgpt", "claude"]))

    assert summary.total == 4
    assert summary.succeeded == 4
    assert sorted(gpt.calls) == ["q1", "q2"]
    assert sorted(claude.calls) == ["q1", "q2"]
    by_engine = {}
    for r in _results(session_factory):
        by_engine.setdefault(r.engine, []).append(r.provider)
    assert by_engine == {"chatgpt": ["gpt", "gpt"], "claude": ["claude_api", "claude_api"]}


def test_async_provider_leaves_result_running_with_handle(session_factory, sync_redis):
    snapshotter = ScriptedProvider("snapshotter", default="async")
    backup = ScriptedProvider("backup")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "snapshotter", "priority": 1},
        {"name": "backup", "priority": 2},
    ])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(snapshotter, backup))

    summary = engine.execute_queries(None, _items(["q1"]))

    assert (summary.succeeded, summary.failed, summary.in_flight) == (0, 0, 1)
    assert backup.calls == []
    [result] = _results(session_factory)
    assert result.status == ExecutionStatus.RUNNING.value
    assert result.provider == "snapshotter"
    assert result.provider_handle.startswith("snapshotter-")


def test_retry_items_point_at_the_failed_result(session_factory, sync_redis):
    failed_id = uuid.uuid4()
    provider = ScriptedProvider("only")
    chain = _chain(session_factory, sync_redis, "chatgpt", [{"name": "only"}])
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup(provider))

    engine.execute_queries(None, _items(["q1"], retry_of=failed_id))

    assert _results(session_factory)[0].retry_of == failed_id


def test_empty_batch_does_nothing(session_factory, sync_redis):
    chain = CollectorChain(sync_redis, session_factory)
    engine = ExecutionEngine(session_factory, chain, provider_lookup=provider_lookup())

    summary = engine.execute_queries(None, [])

    assert summary.total == 0
    assert _results(session_factory) == []


def test_provider_health_is_recorded(session_factory, sync_redis):
    primary = ScriptedProvider("primary", default="transient")
    backup = ScriptedProvider("backup")
    chain = _chain(session_factory, sync_redis, "chatgpt", [
        {"name": "primary", "priority": 1},
        {"name": "backup", "priority": 2},
    ])
    health = ProviderHealthTracker(sync_redis)
    engine = ExecutionEngine(
        session_factory, chain, health=health, provider_lookup=provider_lookup(primary, backup)
    )

    engine.execute_queries(None, _items(["q1", "q2"]))

    report = health.read("chatgpt")
    assert report["primary"]["failure"] == 2
    assert report["primary"]["success"] == 0
    assert report["primary"]["last_outcome"] == "transient"
    assert report["backup"]["success"] == 2
    assert report["backup"]["last_outcome"] == "completed"
