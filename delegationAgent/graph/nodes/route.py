"""Route node: handle-directly vs delegate, before the agent's first model call."""

from __future__ import annotations

import logging
import uuid

from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableConfig

from delegationAgent.agents.schema import AgentConfig
from delegationAgent.delegation.coordinator import DelegationCoordinator
from delegationAgent.graph.state import ExecutionState, scope_from_config, step_update
from delegationAgent.runtime.models import ExecutionStatus
from delegationAgent.tools.delegate import DELEGATE_TOOL_NAME
from delegationAgent.utils.logging_utils import log_node_entry, log_node_exit

LOGGER = logging.getLogger(__name__)


def build_route_node(*, agent: AgentConfig, coordinator: DelegationCoordinator):
    """Build the route node for a delegating agent.

    A delegate decision becomes a synthetic ``delegate_task`` tool call, so the
    delegation runs through the same approval and tools steps (and the same
    checkpoint bookkeeping) as a model-issued one.
    """

    async def route_node(state: ExecutionState, config: RunnableConfig):
        log_node_entry(LOGGER, "route", state)
        scope = scope_from_config(config)
        await scope.transition(ExecutionStatus.ROUTING)

        decision = await coordinator.decide(state, agent)
        routing = {
            "action": decision.action,
            "target_agent_id": decision.target_agent_id,
            "source": decision.source,
            "confidence": round(decision.confidence, 3),
            "reason": decision.reason,
            "tool_call_id": None,
        }

        updates = {"routing": routing}
        if decision.delegate:
            call_id = f"route_{uuid.uuid4().hex[:12]}"
            routing["tool_call_id"] = call_id
            updates["messages"] = [AIMessage(
                content="",
                tool_calls=[{
                    "name": DELEGATE_TOOL_NAME,
                    "args": {"agent_id": decision.target_agent_id, "task": decision.task_description},
                    "id": call_id,
                    "type": "tool_call",
                }],
            )]
            LOGGER.info(f"{agent.id} routes to {decision.target_agent_id} via {decision.source}")

        update = step_update(state, "route", **updates)
        log_node_exit(LOGGER, "route", update)
        return update

    return route_node
