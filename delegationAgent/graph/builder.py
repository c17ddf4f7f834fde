"""Factory for assembling the per-agent execution plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from langgraph.graph import StateGraph, START, END

from delegationAgent.agents.interfaces import ModelResolver
from delegationAgent.agents.registry import AgentRegistry
from delegationAgent.agents.schema import AgentConfig
from delegationAgent.delegation.coordinator import DelegationCoordinator
from delegationAgent.graph.nodes import (
    build_agent_node,
    build_approval_node,
    build_finalize_node,
    build_route_node,
    build_tools_node,
)
from delegationAgent.graph.routing import build_entry_route, next_node
from delegationAgent.graph.state import ExecutionState
from delegationAgent.hitl.approval_checker import ApprovalChecker
from delegationAgent.runtime.timeouts import TimeoutBudgetManager
from delegationAgent.tools.dispatcher import ToolDispatcher
from delegationAgent.tools.registry import ToolRegistry
from delegationAgent.utils.resilience import ModelCallGuard

LOGGER = logging.getLogger(__name__)


@dataclass
class PlanDependencies:
    """Shared collaborators every agent's plan is built from."""

    model_resolver: ModelResolver
    agent_registry: AgentRegistry
    tool_registry: ToolRegistry
    dispatcher: ToolDispatcher
    coordinator: DelegationCoordinator
    budget: TimeoutBudgetManager
    approval_checker: Optional[ApprovalChecker] = None
    max_tool_calls: int = 50
    max_delegation_depth: int = 3
    model_guard: Optional[ModelCallGuard] = None


def build_plan_graph(agent: AgentConfig, deps: PlanDependencies) -> StateGraph:
    """Compose the execution plan of one agent.

    Architecture:

        START ─→ route ─→ approval ─→ tools ─→ agent ⇄ approval → tools
           │        └───────────────────────→ agent ─→ finalize → END
           └─(direct / resume_at)──────────→ any node
                               approval ─(needs human)→ END (paused)

    The route node only exists for agents that can delegate. The plan is
    returned uncompiled; GraphCache compiles and caches it per agent id. Each
    run passes its execution scope in ``config["configurable"]["scope"]``.
    """
    graph = StateGraph(ExecutionState)

    # ========== Build nodes ==========
    if agent.can_delegate:
        graph.add_node("route", build_route_node(agent=agent, coordinator=deps.coordinator))

    graph.add_node("agent", build_agent_node(
        agent=agent,
        model_resolver=deps.model_resolver,
        agent_registry=deps.agent_registry,
        tool_registry=deps.tool_registry,
        budget=deps.budget,
        max_delegation_depth=deps.max_delegation_depth,
        model_guard=deps.model_guard,
    ))
    graph.add_node("approval", build_approval_node(agent=agent, approval_checker=deps.approval_checker))
    graph.add_node("tools", build_tools_node(
        agent=agent,
        dispatcher=deps.dispatcher,
        coordinator=deps.coordinator,
        budget=deps.budget,
        max_tool_calls=deps.max_tool_calls,
    ))
    graph.add_node("finalize", build_finalize_node(agent=agent))

    # ========== Edges ==========
    path_map: Dict[str, str] = {name: name for name in graph.nodes}
    path_map["pause"] = END
    path_map["end"] = END

    graph.add_conditional_edges(START, build_entry_route(agent), path_map)
    for name in list(graph.nodes):
        graph.add_conditional_edges(name, next_node, path_map)

    LOGGER.info(f"Built plan for {agent.id}: nodes={list(graph.nodes)}")
    return graph


def plan_factory(agent_id: str, agent_registry: AgentRegistry, deps: PlanDependencies):
    """Zero-argument factory for ``GraphCache.get_or_compile``."""

    def factory() -> StateGraph:
        return build_plan_graph(agent_registry.require(agent_id), deps)

    return factory
