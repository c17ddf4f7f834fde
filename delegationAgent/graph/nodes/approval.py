"""Approval node: HITL gate in front of the tools step."""

from __future__ import annotations

import logging
from typing import Optional

from langchain_core.runnables import RunnableConfig

from delegationAgent.agents.schema import AgentConfig
from delegationAgent.graph.state import ExecutionState, step_update
from delegationAgent.hitl.approval_checker import ApprovalChecker
from delegationAgent.tools.delegate import is_delegation
from delegationAgent.utils.logging_utils import log_node_entry, log_node_exit
from delegationAgent.utils.message_utils import pending_tool_calls

LOGGER = logging.getLogger(__name__)

_RISK_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}


def build_approval_node(*, agent: AgentConfig, approval_checker: Optional[ApprovalChecker] = None):
    """审批节点：检查待执行的 tool calls，需要审批时写入 pending_approval

    暂停本身由 ExecutionManager 完成（图在 pending_approval 非空时结束）。
    已审批的调用和 delegate_task 不再检查。
    """

    async def approval_node(state: ExecutionState, config: RunnableConfig):
        log_node_entry(LOGGER, "approval", state)

        approved = set(state.get("approved_tool_call_ids", []))
        calls = [
            call for call in pending_tool_calls(state.get("messages", []), state.get("completed_tool_calls", []))
            if call.get("id") not in approved and not is_delegation(call)
        ]

        decisions = approval_checker.check_batch(calls, agent) if (approval_checker and calls) else {}
        if not decisions:
            update = step_update(state, "approval", pending_approval=None)
            log_node_exit(LOGGER, "approval", update)
            return update

        flagged = [
            {
                "id": call["id"],
                "name": call["name"],
                "args": call.get("args") or {},
                "reason": decisions[call["id"]].reason,
                "risk_level": decisions[call["id"]].risk_level,
            }
            for call in calls if call["id"] in decisions
        ]
        top = max(flagged, key=lambda item: _RISK_ORDER.get(item["risk_level"], 0))
        payload = {
            "type": "tool_approval",
            "agent_id": agent.id,
            "tool_calls": flagged,
            "reason": top["reason"],
            "risk_level": top["risk_level"],
        }
        LOGGER.info(f"{agent.id}: {len(flagged)} tool call(s) need approval ({top['risk_level']}: {top['reason']})")

        update = step_update(state, "approval", pending_approval=payload)
        log_node_exit(LOGGER, "approval", update)
        return update

    return approval_node
