"""Tools node: runs the pending tool calls and delegations of one step.

Regular calls go through the ToolDispatcher (parallel or sequential per agent).
``delegate_task`` calls become child executions through the coordinator. Both run
concurrently; results are appended in the order the model requested them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError

from delegationAgent.agents.schema import AgentConfig
from delegationAgent.delegation.coordinator import DelegationCoordinator
from delegationAgent.graph.state import ExecutionState, scope_from_config, step_update
from delegationAgent.runtime.models import DelegationRequest, ExecutionStatus, ToolCall, ToolResult
from delegationAgent.runtime.timeouts import TimeoutBudgetManager
from delegationAgent.tools.delegate import is_delegation, parse_delegate_args
from delegationAgent.tools.dispatcher import ToolDispatcher
from delegationAgent.utils.errors import BudgetExceeded, DelegationAgentError, ToolError
from delegationAgent.utils.logging_utils import log_node_entry, log_node_exit
from delegationAgent.utils.message_utils import pending_tool_calls

LOGGER = logging.getLogger(__name__)


def build_tools_node(
    *,
    agent: AgentConfig,
    dispatcher: ToolDispatcher,
    coordinator: DelegationCoordinator,
    budget: TimeoutBudgetManager,
    max_tool_calls: int,
):
    def build_delegation(state: ExecutionState, execution, call: ToolCall) -> DelegationRequest:
        args = parse_delegate_args(call.args)
        routing = state.get("routing") or {}
        if routing.get("tool_call_id") == call.id:
            # Route node already wrote a self-contained task
            task, source = args.task, routing.get("source") or "route"
        else:
            task, source = coordinator.build_task_description(agent, args.task, args.context), "tool_call"
        return coordinator.build_request(execution, args.agent_id, task, tool_call_id=call.id, source=source)

    async def tools_node(state: ExecutionState, config: RunnableConfig):
        log_node_entry(LOGGER, "tools", state)
        scope = scope_from_config(config)
        execution = scope.execution
        await scope.transition(ExecutionStatus.EXECUTING)

        completed = list(state.get("completed_tool_calls", []))
        pending = pending_tool_calls(state.get("messages", []), completed)
        if not pending:
            update = step_update(state, "tools", approved_tool_call_ids=[], pending_approval=None)
            log_node_exit(LOGGER, "tools", update)
            return update

        ordered: List[ToolCall] = []
        results: Dict[str, ToolResult] = {}
        regular: List[ToolCall] = []
        requests: List[DelegationRequest] = []
        remaining_calls = max(0, max_tool_calls - state.get("tool_call_count", 0))

        for raw_call in pending:
            call = ToolCall.from_message_call(raw_call)
            ordered.append(call)
            if remaining_calls <= 0:
                results[call.id] = ToolResult.failure(
                    call, BudgetExceeded(f"tool call limit reached ({max_tool_calls} per execution)")
                )
                continue
            remaining_calls -= 1

            if is_delegation(raw_call):
                try:
                    requests.append(build_delegation(state, execution, call))
                except ValidationError as e:
                    results[call.id] = ToolResult.failure(call, ToolError(call.name, f"invalid arguments: {e}"))
                except DelegationAgentError as e:
                    results[call.id] = ToolResult.failure(call, e)
            elif call.name not in agent.tool_names:
                results[call.id] = ToolResult.failure(
                    call, ToolError(call.name, f"not available to agent '{agent.id}'")
                )
            else:
                regular.append(call)

        async def run_regular() -> List[ToolResult]:
            if not regular:
                return []
            if agent.parallel_tools:
                return await dispatcher.dispatch(regular, deadline=execution.deadline, on_event=scope.emit)
            return await dispatcher.dispatch_sequential(regular, deadline=execution.deadline, on_event=scope.emit)

        if requests:
            # The coordinator emits one delegating event per child
            await scope.transition(ExecutionStatus.DELEGATING, emit=False)

        tool_results, *delegation_results = await asyncio.gather(
            run_regular(),
            *(coordinator.delegate(request, scope) for request in requests),
        )

        if requests:
            await scope.transition(ExecutionStatus.EXECUTING)

        for result in [*tool_results, *delegation_results]:
            results[result.call_id] = result

        executed = len(regular) + len(requests)
        if executed:
            budget.record_tool_calls(execution, executed)

        failed = sum(1 for call in ordered if not results[call.id].ok)
        LOGGER.info(f"{agent.id} step: {len(ordered)} call(s), {len(requests)} delegation(s), {failed} failed")

        update = step_update(
            state,
            "tools",
            messages=[results[call.id].to_message() for call in ordered],
            completed_tool_calls=completed + [call.id for call in ordered],
            tool_call_count=state.get("tool_call_count", 0) + executed,
            approved_tool_call_ids=[],
            pending_approval=None,
        )
        log_node_exit(LOGGER, "tools", update)
        return update

    return tools_node
