"""Finalize node: extracts the execution's final answer."""

from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from delegationAgent.agents.schema import AgentConfig
from delegationAgent.graph.prompts import CYCLE_LIMIT_NOTE, NO_ANSWER_TEXT
from delegationAgent.graph.state import ExecutionState, scope_from_config, step_update
from delegationAgent.runtime.models import ExecutionStatus
from delegationAgent.utils.logging_utils import log_node_entry, log_node_exit
from delegationAgent.utils.message_utils import last_ai_message, pending_tool_calls, stringify_content

LOGGER = logging.getLogger(__name__)


def build_finalize_node(*, agent: AgentConfig):

    async def finalize_node(state: ExecutionState, config: RunnableConfig):
        log_node_entry(LOGGER, "finalize", state)
        scope = scope_from_config(config)
        await scope.transition(ExecutionStatus.COMPLETING)

        messages = state.get("messages", [])
        last = last_ai_message(messages)
        answer = stringify_content(last.content).strip() if last else ""

        if pending_tool_calls(messages, state.get("completed_tool_calls", [])):
            LOGGER.warning(f"{agent.id} hit the agent cycle limit with tool calls still pending")
            answer = f"{answer}\n\n{CYCLE_LIMIT_NOTE}".strip()

        update = step_update(state, "finalize", final_answer=answer or NO_ANSWER_TEXT)
        log_node_exit(LOGGER, "finalize", update)
        return update

    return finalize_node
