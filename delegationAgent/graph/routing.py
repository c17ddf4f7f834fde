"""Conditional routing helpers for the execution plan.

    START ─(entry)→ route → approval → tools → agent ⇄ approval/tools → finalize → END
                      ↘ agent                    approval ─(needs human)→ pause (END)

Every node routes through ``next_node``, which only looks at the state. Resume
uses the same function to find the next pending step.
"""

from __future__ import annotations

import logging
from typing import Callable, Literal

from .state import ExecutionState
from delegationAgent.agents.schema import AgentConfig
from delegationAgent.utils.logging_utils import log_routing_decision
from delegationAgent.utils.message_utils import pending_tool_calls

LOGGER = logging.getLogger(__name__)

NodeName = Literal["route", "agent", "approval", "tools", "finalize", "pause", "end"]

PLAN_NODES = ("route", "agent", "approval", "tools", "finalize")


def next_node(state: ExecutionState) -> NodeName:
    """Next step after the node recorded in ``state["phase"]``.

    Returns:
        "approval": pending tool calls must pass the approval gate
        "tools": approved calls are ready to run
        "agent": the model decides the next move
        "finalize": no more tool calls, or the agent cycle limit was hit
        "pause": a human must answer before continuing
        "end": the plan finished
    """
    phase = state.get("phase")
    pending = pending_tool_calls(state.get("messages", []), state.get("completed_tool_calls", []))

    if phase == "route":
        decision, reason = ("approval", "delegation requested") if pending else ("agent", "handle directly")
    elif phase == "agent":
        cycles = state.get("agent_cycles", 0)
        max_cycles = state.get("max_agent_cycles", 25)
        if pending and cycles >= max_cycles:
            decision, reason = "finalize", f"Agent cycle limit reached ({cycles}/{max_cycles})"
        elif pending:
            decision, reason = "approval", f"LLM requested {len(pending)} tool call(s)"
        else:
            decision, reason = "finalize", "No tool calls, LLM decided to finish"
    elif phase == "approval":
        if state.get("pending_approval"):
            decision, reason = "pause", "Waiting for human approval"
        else:
            decision, reason = "tools", "Tool calls approved"
    elif phase == "tools":
        decision, reason = "agent", "Tool results merged"
    elif phase == "finalize":
        decision, reason = "end", "Plan finished"
    else:
        decision, reason = "agent", f"Unknown phase {phase!r}"

    log_routing_decision(LOGGER, phase or "start", decision, reason)
    return decision


def build_entry_route(agent: AgentConfig) -> Callable[[ExecutionState], NodeName]:
    """Entry edge: resume point if set, else the route node for delegating agents."""

    def entry_route(state: ExecutionState) -> NodeName:
        resume_at = state.get("resume_at")
        if resume_at:
            decision, reason = resume_at, "Resuming at pending step"
        elif agent.can_delegate and not state.get("routing"):
            decision, reason = "route", "Delegation decision first"
        else:
            decision, reason = "agent", "Direct handling"
        log_routing_decision(LOGGER, "start", decision, reason)
        return decision

    return entry_route
