"""Tests for plan routing decisions."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from delegationAgent.agents import AgentConfig
from delegationAgent.graph.routing import build_entry_route, next_node
from delegationAgent.graph.state import new_execution_state, scope_from_config, step_update
from fakes import ai_tool_calls, tool_call


def _state(phase, messages=(), **extra):
    state = new_execution_state(
        execution_id="exec_1",
        thread_id="t",
        agent_id="supervisor",
        messages=[HumanMessage(content="q"), *messages],
        max_agent_cycles=3,
    )
    state["phase"] = phase
    state.update(extra)
    return state


CALL = ai_tool_calls(tool_call("lookup", {"query": "a"}, "c1"))


class TestNextNode:
    def test_agent_with_tool_calls_goes_to_approval(self):
        assert next_node(_state("agent", [CALL])) == "approval"

    def test_agent_without_tool_calls_finalizes(self):
        assert next_node(_state("agent", [AIMessage(content="done")])) == "finalize"

    def test_cycle_limit_finalizes(self):
        assert next_node(_state("agent", [CALL], agent_cycles=3)) == "finalize"

    def test_route_with_delegation_call(self):
        assert next_node(_state("route", [CALL])) == "approval"
        assert next_node(_state("route")) == "agent"

    def test_approval_pauses_when_human_needed(self):
        assert next_node(_state("approval", [CALL], pending_approval={"type": "tool_approval"})) == "pause"
        assert next_node(_state("approval", [CALL])) == "tools"

    def test_tools_loop_back_to_agent(self):
        messages = [CALL, ToolMessage(content="r", tool_call_id="c1")]
        assert next_node(_state("tools", messages, completed_tool_calls=["c1"])) == "agent"

    def test_finalize_ends(self):
        assert next_node(_state("finalize")) == "end"

    def test_unknown_phase(self):
        assert next_node(_state(None)) == "agent"


class TestEntryRoute:
    def test_resume_point_wins(self):
        entry = build_entry_route(AgentConfig(id="supervisor", can_delegate=True))
        assert entry(_state(None, resume_at="tools")) == "tools"

    def test_delegating_agent_routes_first(self):
        entry = build_entry_route(AgentConfig(id="supervisor", can_delegate=True))
        assert entry(_state(None)) == "route"
        assert entry(_state(None, routing={"action": "handle"})) == "agent"

    def test_plain_agent_goes_straight_to_agent(self):
        assert build_entry_route(AgentConfig(id="researcher"))(_state(None)) == "agent"


class TestStateHelpers:
    def test_step_update(self):
        update = step_update({"step": 4}, "tools", tool_call_count=2)
        assert update == {"phase": "tools", "step": 5, "resume_at": None, "tool_call_count": 2}

    def test_scope_from_config(self):
        assert scope_from_config({"configurable": {"scope": "s"}}) == "s"
        with pytest.raises(RuntimeError):
            scope_from_config({"configurable": {}})
