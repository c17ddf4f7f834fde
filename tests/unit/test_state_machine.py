"""Tests for the execution state machine and runtime records."""

import pytest

from delegationAgent.runtime.models import (
    Execution,
    ExecutionStatus,
    ToolCall,
    ToolCallStatus,
    ToolResult,
)
from delegationAgent.utils.errors import InvalidTransition, ToolTimeout


def _execution(**overrides):
    fields = dict(execution_id="exec_1", thread_id="alice:1", agent_id="supervisor", deadline=2_000_000_000.0)
    fields.update(overrides)
    return Execution(**fields)


class TestTransitions:
    def test_happy_path(self):
        execution = _execution()
        for status in (
            ExecutionStatus.ROUTING,
            ExecutionStatus.DELEGATING,
            ExecutionStatus.EXECUTING,
            ExecutionStatus.AWAITING_INPUT,
            ExecutionStatus.EXECUTING,
            ExecutionStatus.COMPLETING,
            ExecutionStatus.COMPLETED,
        ):
            assert execution.transition_to(status)
        assert execution.is_terminal

    def test_same_state_is_a_no_op(self):
        execution = _execution(status=ExecutionStatus.EXECUTING)
        assert execution.transition_to(ExecutionStatus.EXECUTING) is False

    @pytest.mark.parametrize(
        "start",
        [
            ExecutionStatus.CREATED,
            ExecutionStatus.ROUTING,
            ExecutionStatus.EXECUTING,
            ExecutionStatus.DELEGATING,
            ExecutionStatus.AWAITING_INPUT,
            ExecutionStatus.COMPLETING,
        ],
    )
    def test_abort_reachable_from_every_live_state(self, start):
        for target in (ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT):
            assert _execution(status=start).can_transition(target)

    @pytest.mark.parametrize("terminal", [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT])
    def test_terminal_states_are_final(self, terminal):
        execution = _execution(status=terminal)
        with pytest.raises(InvalidTransition):
            execution.transition_to(ExecutionStatus.EXECUTING)

    def test_cannot_complete_without_completing(self):
        with pytest.raises(InvalidTransition):
            _execution(status=ExecutionStatus.EXECUTING).transition_to(ExecutionStatus.COMPLETED)

    def test_delegating_cannot_pause(self):
        assert not _execution(status=ExecutionStatus.DELEGATING).can_transition(ExecutionStatus.AWAITING_INPUT)


class TestSnapshot:
    def test_snapshot_restores_identity_with_new_deadline(self):
        execution = _execution(
            parent_execution_id="exec_0",
            depth=2,
            status=ExecutionStatus.AWAITING_INPUT,
            user_id="alice",
        )

        restored = Execution.from_snapshot(execution.snapshot(), deadline=3_000_000_000.0)

        assert restored.execution_id == "exec_1"
        assert restored.parent_execution_id == "exec_0"
        assert restored.depth == 2
        assert restored.status == ExecutionStatus.AWAITING_INPUT
        assert restored.deadline == 3_000_000_000.0

    def test_budget_remaining_ms(self):
        execution = _execution(deadline=100.0)
        assert execution.budget_remaining_ms(now=99.5) == 500
        assert execution.budget_remaining_ms(now=101.0) == 0


class TestToolRecords:
    def test_from_message_call(self):
        call = ToolCall.from_message_call({"name": "lookup", "args": {"query": "x"}, "id": "c1"})
        assert (call.id, call.name, call.args, call.status) == ("c1", "lookup", {"query": "x"}, ToolCallStatus.PENDING)

    def test_missing_id_is_generated(self):
        assert ToolCall.from_message_call({"name": "lookup"}).id.startswith("call_")

    def test_failed_result_message(self):
        call = ToolCall(id="c1", name="slow")
        message = ToolResult.failure(call, ToolTimeout("slow", 0.2)).to_message()

        assert message.status == "error"
        assert message.tool_call_id == "c1"
        assert message.content.startswith("Error (ToolTimeout)")

    def test_success_message(self):
        message = ToolResult.success(ToolCall(id="c1", name="lookup"), "sunny").to_message()
        assert message.content == "sunny"
        assert message.status == "success"
