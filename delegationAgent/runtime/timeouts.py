"""Hierarchical timeout budgets.

Deadlines are absolute wall-clock times. Every layer hands its deadline down and
each child deadline is strictly earlier than the parent's by a margin:

    supervisor (900s) → delegation (420s) → subagent (300s) → tool (60s)

The manager never cancels work itself. Execution managers and the tool dispatcher
consult it before starting new work.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from delegationAgent.config.settings import TimeoutSettings
from delegationAgent.runtime.models import Execution
from delegationAgent.utils.errors import BudgetExceeded

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]

WARNING_UTILIZATION = 0.8


class Layer(str, Enum):
    SUPERVISOR = "supervisor"
    DELEGATION = "delegation"
    SUBAGENT = "subagent"
    TOOL = "tool"


@dataclass(frozen=True)
class LayerPolicy:
    timeout_s: float
    min_margin_s: float


@dataclass
class BudgetUsage:
    """Work counters for one execution (time is tracked via its deadline)."""

    started_at: float
    deadline: float
    agent_cycles: int = 0
    tool_calls: int = 0
    warned: bool = False

    def utilization(self, now: float) -> float:
        total = self.deadline - self.started_at
        if total <= 0:
            return 1.0
        return min(1.0, max(0.0, (now - self.started_at) / total))


class TimeoutBudgetManager:
    """Allocates nested deadlines and reports remaining time."""

    def __init__(self, settings: Optional[TimeoutSettings] = None, clock: Clock = time.time):
        settings = settings or TimeoutSettings()
        self.clock = clock
        self.margin_ratio = settings.margin_ratio
        self.policies: Dict[Layer, LayerPolicy] = {
            Layer.SUPERVISOR: LayerPolicy(settings.supervisor_s, settings.supervisor_min_margin_s),
            Layer.DELEGATION: LayerPolicy(settings.delegation_s, settings.delegation_min_margin_s),
            Layer.SUBAGENT: LayerPolicy(settings.subagent_s, settings.subagent_min_margin_s),
            Layer.TOOL: LayerPolicy(settings.tool_s, settings.tool_min_margin_s),
        }
        self._usage: Dict[str, BudgetUsage] = {}

    def now(self) -> float:
        return self.clock()

    # ========== Allocation ==========

    def margin_for(self, layer: Layer, parent_deadline: Optional[float], now: Optional[float] = None) -> float:
        """Margin a child at ``layer`` must keep before ``parent_deadline``."""
        if parent_deadline is None:
            return 0.0
        now = self.now() if now is None else now
        remaining = max(0.0, parent_deadline - now)
        return max(self.policies[Layer(layer)].min_margin_s, self.margin_ratio * remaining)

    def allocate(
        self,
        parent_deadline: Optional[float],
        layer: Layer,
        timeout_s: Optional[float] = None,
    ) -> float:
        """Return a child deadline for ``layer`` under ``parent_deadline``.

        Args:
            parent_deadline: Absolute parent deadline, None for a top-level execution
            layer: Layer being allocated
            timeout_s: Override for the layer's default timeout

        Returns:
            Absolute child deadline, at most ``parent_deadline - margin_for(layer)``

        Raises:
            BudgetExceeded: The parent has no time left to give
        """
        layer = Layer(layer)
        now = self.now()
        wanted = now + (timeout_s if timeout_s is not None else self.policies[layer].timeout_s)
        if parent_deadline is None:
            return wanted

        margin = self.margin_for(layer, parent_deadline, now=now)
        ceiling = parent_deadline - margin
        child = min(wanted, ceiling)
        if child <= now:
            raise BudgetExceeded(
                f"No {layer.value} budget left: parent has {max(0.0, parent_deadline - now):.2f}s, "
                f"margin {margin:.2f}s",
            )
        if child < wanted:
            LOGGER.debug(f"{layer.value} deadline clamped by parent: {child - now:.2f}s instead of {wanted - now:.2f}s")
        return child

    # ========== Reporting ==========

    def remaining_s(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return float("inf")
        return max(0.0, deadline - self.now())

    def remaining_ms(self, execution: Execution) -> int:
        """Time left for an execution, in milliseconds."""
        return int(self.remaining_s(execution.deadline) * 1000)

    def is_expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self.now() >= deadline

    def ensure_time_left(self, deadline: Optional[float], what: str) -> float:
        """Return remaining seconds or raise BudgetExceeded when none is left."""
        remaining = self.remaining_s(deadline)
        if remaining <= 0:
            raise BudgetExceeded(f"deadline passed before {what}")
        return remaining

    # ========== Work counters ==========

    def track(self, execution: Execution) -> BudgetUsage:
        usage = self._usage.get(execution.execution_id)
        if usage is None or usage.deadline != execution.deadline:
            usage = BudgetUsage(started_at=self.now(), deadline=execution.deadline)
            self._usage[execution.execution_id] = usage
        return usage

    def record_cycle(self, execution: Execution) -> BudgetUsage:
        usage = self.track(execution)
        usage.agent_cycles += 1
        self._check_utilization(execution, usage)
        return usage

    def record_tool_calls(self, execution: Execution, count: int) -> BudgetUsage:
        usage = self.track(execution)
        usage.tool_calls += count
        self._check_utilization(execution, usage)
        return usage

    def release(self, execution_id: str) -> None:
        self._usage.pop(execution_id, None)

    def usage_count(self) -> int:
        """Executions currently tracked."""
        return len(self._usage)

    def _check_utilization(self, execution: Execution, usage: BudgetUsage) -> None:
        utilization = usage.utilization(self.now())
        if utilization >= WARNING_UTILIZATION and not usage.warned:
            usage.warned = True
            LOGGER.warning(
                f"Execution {execution.execution_id} ({execution.agent_id}) has used "
                f"{utilization:.0%} of its time budget"
            )
