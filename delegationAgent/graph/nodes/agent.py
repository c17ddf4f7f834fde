"""Agent node: one model call that answers or requests tool calls."""

from __future__ import annotations

import logging
from typing import Optional

from langchain_core.messages import AIMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from delegationAgent.agents.interfaces import ModelResolver
from delegationAgent.agents.registry import AgentRegistry
from delegationAgent.agents.schema import AgentConfig
from delegationAgent.graph.prompts import build_system_prompt
from delegationAgent.graph.state import ExecutionState, scope_from_config, step_update
from delegationAgent.runtime.models import ExecutionStatus
from delegationAgent.runtime.timeouts import TimeoutBudgetManager
from delegationAgent.tools.delegate import delegate_tool_schema
from delegationAgent.tools.registry import ToolRegistry
from delegationAgent.utils.logging_utils import log_node_entry, log_node_exit
from delegationAgent.utils.resilience import ModelCallGuard
from delegationAgent.utils.message_utils import stringify_content

LOGGER = logging.getLogger(__name__)


def build_agent_node(
    *,
    agent: AgentConfig,
    model_resolver: ModelResolver,
    agent_registry: AgentRegistry,
    tool_registry: ToolRegistry,
    budget: TimeoutBudgetManager,
    max_delegation_depth: int,
    model_guard: Optional[ModelCallGuard] = None,
):
    tools = tool_registry.tools_for(agent)

    async def agent_node(state: ExecutionState, config: RunnableConfig):
        log_node_entry(LOGGER, "agent", state)
        scope = scope_from_config(config)
        execution = scope.execution
        await scope.transition(ExecutionStatus.EXECUTING)
        budget.ensure_time_left(execution.deadline, f"{agent.id} model call")

        depth = state.get("depth", 0)
        targets = agent_registry.delegation_targets(agent.id) if agent.can_delegate else []
        visible_tools = list(tools)
        # Depth is enforced again at request time; hiding the tool just saves a wasted call
        if targets and depth < max_delegation_depth:
            visible_tools.append(delegate_tool_schema())

        model = model_resolver(agent, visible_tools)
        prompt = build_system_prompt(agent, targets, depth)
        messages = [SystemMessage(content=prompt), *state.get("messages", [])]
        if model_guard is None:
            response = await model.ainvoke(messages)
        else:
            response = await model_guard.invoke(
                agent.id,
                lambda: model.ainvoke(messages),
                before_retry=lambda: budget.ensure_time_left(execution.deadline, f"{agent.id} model retry"),
            )
        if not isinstance(response, AIMessage):
            response = AIMessage(content=stringify_content(getattr(response, "content", response)))

        budget.record_cycle(execution)
        if response.tool_calls:
            LOGGER.info(f"{agent.id} requested tools: {[call['name'] for call in response.tool_calls]}")

        update = step_update(
            state,
            "agent",
            messages=[response],
            agent_cycles=state.get("agent_cycles", 0) + 1,
        )
        log_node_exit(LOGGER, "agent", update)
        return update

    return agent_node
