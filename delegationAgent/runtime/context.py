"""Collaborators shared by every execution of one orchestrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from delegationAgent.agents.registry import AgentRegistry
from delegationAgent.cache.graph_cache import GraphCache
from delegationAgent.config.settings import Settings
from delegationAgent.delegation.coordinator import DelegationCoordinator
from delegationAgent.graph.builder import PlanDependencies, plan_factory
from delegationAgent.hitl.approval_checker import ApprovalChecker
from delegationAgent.hitl.interrupts import InterruptManager
from delegationAgent.persistence.checkpointer import CheckpointAdapter
from delegationAgent.runtime.timeouts import TimeoutBudgetManager
from delegationAgent.tools.dispatcher import ToolDispatcher
from delegationAgent.tools.registry import ToolRegistry


@dataclass
class OrchestratorContext:
    """Explicit wiring instead of module-level singletons."""

    settings: Settings
    agent_registry: AgentRegistry
    tool_registry: ToolRegistry
    graph_cache: GraphCache
    budget: TimeoutBudgetManager
    checkpoints: CheckpointAdapter
    interrupts: InterruptManager
    coordinator: DelegationCoordinator
    dispatcher: ToolDispatcher
    plan_deps: PlanDependencies
    approval_checker: Optional[ApprovalChecker] = None

    def plan_for(self, agent_id: str) -> Any:
        """Compiled plan for ``agent_id`` (compiled once, then cached).

        Raises:
            CompileError: The plan could not be built or compiled
        """
        return self.graph_cache.get_or_compile(
            agent_id, plan_factory(agent_id, self.agent_registry, self.plan_deps)
        )

    def warmup(self):
        """Compile every enabled agent's plan ahead of the first request."""
        return self.graph_cache.warmup({
            agent.id: plan_factory(agent.id, self.agent_registry, self.plan_deps)
            for agent in self.agent_registry.list_enabled()
        })
