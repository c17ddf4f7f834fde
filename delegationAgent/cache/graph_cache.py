"""Compiled execution plan cache.

One compiled LangGraph per agent id. Concurrent first-time requests for the same id
collapse into a single compilation; ``invalidate`` is visible to every later
``get_or_compile``. A compile that races an invalidation is returned to its caller
but never cached.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from delegationAgent.utils.errors import CompileError

LOGGER = logging.getLogger(__name__)

# Returns an uncompiled StateGraph (compiled here) or an already compiled plan
PlanFactory = Callable[[], Any]


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    compile_failures: int = 0
    total_compile_ms: float = 0.0
    compiles: int = 0

    @property
    def avg_compile_ms(self) -> float:
        return self.total_compile_ms / self.compiles if self.compiles else 0.0


def _compile(plan: Any) -> Any:
    compile_fn = getattr(plan, "compile", None)
    if callable(compile_fn):
        return compile_fn()
    return plan


class GraphCache:
    """Thread-safe compile-once cache keyed by agent id."""

    def __init__(self):
        self._plans: Dict[str, Any] = {}
        self._compiled_at: Dict[str, float] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._agent_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def get_or_compile(self, agent_id: str, plan_factory: PlanFactory) -> Any:
        """Return the cached plan for ``agent_id``, compiling it at most once.

        Raises:
            CompileError: Factory or compilation failed (nothing is cached)
        """
        with self._lock:
            plan = self._plans.get(agent_id)
            if plan is not None:
                self._stats.hits += 1
                return plan
            agent_lock = self._agent_locks.setdefault(agent_id, threading.Lock())

        with agent_lock:
            # Another caller may have finished compiling while we waited
            with self._lock:
                plan = self._plans.get(agent_id)
                if plan is not None:
                    self._stats.hits += 1
                    return plan
                self._stats.misses += 1
                generation = self._generation_of(agent_id)

            started = time.perf_counter()
            try:
                plan = _compile(plan_factory())
            except Exception as e:
                with self._lock:
                    self._stats.compile_failures += 1
                LOGGER.error(f"Plan compilation failed for {agent_id}: {e}")
                raise CompileError(agent_id, e) from e
            elapsed_ms = (time.perf_counter() - started) * 1000

            with self._lock:
                self._stats.compiles += 1
                self._stats.total_compile_ms += elapsed_ms
                if self._generation_of(agent_id) != generation:
                    LOGGER.info(f"Plan for {agent_id} invalidated during compilation; not caching")
                    return plan
                self._plans[agent_id] = plan
                self._compiled_at[agent_id] = time.time()

            LOGGER.info(f"Compiled plan for {agent_id} in {elapsed_ms:.1f}ms")
            return plan

    def invalidate(self, agent_id: Optional[str] = None) -> int:
        """Evict one plan, or every plan when ``agent_id`` is None.

        Returns:
            Number of evicted plans
        """
        with self._lock:
            if agent_id is None:
                evicted = len(self._plans)
                self._plans.clear()
                self._compiled_at.clear()
                self._epoch += 1
            else:
                evicted = 1 if self._plans.pop(agent_id, None) is not None else 0
                self._compiled_at.pop(agent_id, None)
                self._generations[agent_id] = self._generations.get(agent_id, 0) + 1
            self._stats.invalidations += evicted

        LOGGER.info(f"Invalidated {evicted} cached plan(s) ({agent_id or 'all'})")
        return evicted

    def has(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._plans

    def warmup(self, factories: Mapping[str, PlanFactory] | Iterable[Tuple[str, PlanFactory]]) -> Dict[str, Optional[str]]:
        """Compile plans ahead of time.

        Returns:
            Mapping of agent id to None on success or the failure cause
        """
        items = factories.items() if isinstance(factories, Mapping) else factories
        outcome: Dict[str, Optional[str]] = {}
        for agent_id, factory in items:
            try:
                self.get_or_compile(agent_id, factory)
                outcome[agent_id] = None
            except CompileError as e:
                outcome[agent_id] = e.user_message
        LOGGER.info(f"Warmup finished: {sum(1 for v in outcome.values() if v is None)}/{len(outcome)} compiled")
        return outcome

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "invalidations": self._stats.invalidations,
                "compile_failures": self._stats.compile_failures,
                "total_graphs": len(self._plans),
                "avg_compile_ms": round(self._stats.avg_compile_ms, 3),
                "hit_rate": self._hit_rate_locked(),
            }

    def hit_rate(self) -> float:
        with self._lock:
            return self._hit_rate_locked()

    def export_state(self) -> Dict[str, Any]:
        """Cached agent ids with compile timestamps (for diagnostics)."""
        with self._lock:
            return {
                "agents": sorted(self._plans),
                "compiled_at": dict(self._compiled_at),
                "generations": dict(self._generations),
            }

    def _generation_of(self, agent_id: str) -> Tuple[int, int]:
        return self._epoch, self._generations.get(agent_id, 0)

    def _hit_rate_locked(self) -> float:
        total = self._stats.hits + self._stats.misses
        return self._stats.hits / total if total else 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._plans)
