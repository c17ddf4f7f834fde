"""Tests for the compiled plan cache."""

import threading
import time

import pytest
from langgraph.graph import StateGraph, START, END
from typing_extensions import TypedDict

from delegationAgent.cache import GraphCache
from delegationAgent.utils.errors import CompileError


class _State(TypedDict, total=False):
    value: int


def _graph_factory(counter=None, delay: float = 0.0):
    def factory():
        if counter is not None:
            counter.append(1)
        if delay:
            time.sleep(delay)
        graph = StateGraph(_State)
        graph.add_node("noop", lambda state: {"value": 1})
        graph.add_edge(START, "noop")
        graph.add_edge("noop", END)
        return graph

    return factory


class TestGetOrCompile:
    def test_compiles_once_and_hits_afterwards(self):
        cache = GraphCache()
        compiles = []
        first = cache.get_or_compile("researcher", _graph_factory(compiles))
        second = cache.get_or_compile("researcher", _graph_factory(compiles))

        assert first is second
        assert len(compiles) == 1
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["total_graphs"] == 1
        assert cache.hit_rate() == pytest.approx(0.5)

    def test_returns_compiled_graph(self):
        cache = GraphCache()
        plan = cache.get_or_compile("researcher", _graph_factory())
        assert hasattr(plan, "astream")

    def test_concurrent_first_requests_compile_once(self):
        cache = GraphCache()
        compiles = []
        results = []

        def worker():
            results.append(cache.get_or_compile("engineer", _graph_factory(compiles, delay=0.05)))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(compiles) == 1
        assert all(plan is results[0] for plan in results)

    def test_failed_compile_is_not_cached(self):
        cache = GraphCache()

        def broken():
            raise ValueError("bad prompt template")

        with pytest.raises(CompileError) as exc_info:
            cache.get_or_compile("scheduler", broken)

        assert exc_info.value.agent_id == "scheduler"
        assert "bad prompt template" in exc_info.value.user_message
        assert not cache.has("scheduler")
        assert cache.stats()["compile_failures"] == 1

        compiles = []
        cache.get_or_compile("scheduler", _graph_factory(compiles))
        assert len(compiles) == 1


class TestInvalidate:
    def test_invalidate_one_agent(self):
        cache = GraphCache()
        compiles = []
        cache.get_or_compile("a", _graph_factory(compiles))
        cache.get_or_compile("b", _graph_factory(compiles))

        assert cache.invalidate("a") == 1
        assert not cache.has("a")
        assert cache.has("b")

        cache.get_or_compile("a", _graph_factory(compiles))
        assert len(compiles) == 3

    def test_invalidate_all(self):
        cache = GraphCache()
        cache.get_or_compile("a", _graph_factory())
        cache.get_or_compile("b", _graph_factory())

        assert cache.invalidate() == 2
        assert len(cache) == 0
        assert cache.stats()["invalidations"] == 2

    def test_invalidate_during_compile_discards_result(self):
        cache = GraphCache()
        started = threading.Event()
        release = threading.Event()

        def slow_factory():
            started.set()
            release.wait(timeout=5)
            return _graph_factory()()

        result = {}
        thread = threading.Thread(target=lambda: result.setdefault("plan", cache.get_or_compile("a", slow_factory)))
        thread.start()
        started.wait(timeout=5)
        cache.invalidate("a")
        release.set()
        thread.join()

        assert result["plan"] is not None
        assert not cache.has("a")


class TestWarmupAndExport:
    def test_warmup_reports_failures(self):
        cache = GraphCache()

        def broken():
            raise RuntimeError("missing tool")

        outcome = cache.warmup({"ok": _graph_factory(), "broken": broken})

        assert outcome["ok"] is None
        assert "missing tool" in outcome["broken"]
        assert cache.has("ok")
        assert not cache.has("broken")

    def test_export_state(self):
        cache = GraphCache()
        cache.get_or_compile("a", _graph_factory())
        state = cache.export_state()
        assert state["agents"] == ["a"]
        assert "a" in state["compiled_at"]
