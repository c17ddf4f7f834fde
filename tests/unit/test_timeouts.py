"""Tests for hierarchical timeout budgets."""

import pytest

from delegationAgent.config import TimeoutSettings
from delegationAgent.runtime.models import Execution
from delegationAgent.runtime.timeouts import Layer, TimeoutBudgetManager
from delegationAgent.utils.errors import BudgetExceeded


@pytest.fixture
def budget(fake_clock):
    return TimeoutBudgetManager(TimeoutSettings(), clock=fake_clock)


class TestAllocate:
    def test_top_level_gets_layer_default(self, budget, fake_clock):
        deadline = budget.allocate(None, Layer.SUPERVISOR)
        assert deadline == pytest.approx(fake_clock.now + 900)

    def test_child_deadline_is_strictly_inside_parent(self, budget, fake_clock):
        supervisor = budget.allocate(None, Layer.SUPERVISOR)
        delegation = budget.allocate(supervisor, Layer.DELEGATION)
        subagent = budget.allocate(delegation, Layer.SUBAGENT)
        tool = budget.allocate(subagent, Layer.TOOL)

        assert fake_clock.now < tool < subagent < delegation < supervisor
        assert supervisor - delegation >= budget.margin_for(Layer.DELEGATION, supervisor)

    def test_child_is_clamped_when_parent_is_short(self, budget, fake_clock):
        parent = fake_clock.now + 100
        child = budget.allocate(parent, Layer.SUBAGENT)

        # margin is max(3s, 20% of 100s)
        assert child == pytest.approx(fake_clock.now + 80)

    def test_override_timeout(self, budget, fake_clock):
        parent = budget.allocate(None, Layer.SUPERVISOR)
        tool = budget.allocate(parent, Layer.TOOL, timeout_s=5)
        assert tool == pytest.approx(fake_clock.now + 5)

    def test_exhausted_parent_raises(self, budget, fake_clock):
        parent = fake_clock.now + 2
        with pytest.raises(BudgetExceeded):
            budget.allocate(parent, Layer.DELEGATION)

    def test_margin_ratio_below_floor_rejected(self):
        with pytest.raises(ValueError):
            TimeoutSettings(margin_ratio=0.05)


class TestBudgetScenario:
    def test_two_sequential_delegations_leave_supervisor_budget(self, budget, fake_clock):
        supervisor = budget.allocate(None, Layer.SUPERVISOR)

        for _ in range(2):
            delegation = budget.allocate(supervisor, Layer.DELEGATION)
            subagent = budget.allocate(delegation, Layer.SUBAGENT)
            assert subagent - fake_clock.now == pytest.approx(300)
            fake_clock.advance(300)

        assert budget.remaining_s(supervisor) >= 200
        budget.ensure_time_left(supervisor, "final answer")

    def test_expired_deadline(self, budget, fake_clock):
        deadline = fake_clock.now + 10
        fake_clock.advance(10)

        assert budget.is_expired(deadline)
        assert budget.remaining_s(deadline) == 0
        with pytest.raises(BudgetExceeded):
            budget.ensure_time_left(deadline, "agent step")

    def test_no_deadline_is_unbounded(self, budget):
        assert budget.remaining_s(None) == float("inf")
        assert not budget.is_expired(None)


class TestWorkCounters:
    def test_remaining_ms_and_counters(self, budget, fake_clock):
        execution = Execution(
            execution_id="exec_1",
            thread_id="t1",
            agent_id="supervisor",
            deadline=fake_clock.now + 10,
        )
        assert budget.remaining_ms(execution) == 10_000

        budget.record_cycle(execution)
        usage = budget.record_tool_calls(execution, 3)
        assert usage.agent_cycles == 1
        assert usage.tool_calls == 3

        budget.release("exec_1")
        assert budget.track(execution).tool_calls == 0

    def test_utilization_warning_logged_once(self, budget, fake_clock, caplog):
        execution = Execution(execution_id="exec_2", thread_id="t", agent_id="a", deadline=fake_clock.now + 10)
        budget.track(execution)
        fake_clock.advance(9)

        with caplog.at_level("WARNING"):
            budget.record_cycle(execution)
            budget.record_cycle(execution)

        warnings = [r for r in caplog.records if "time budget" in r.getMessage()]
        assert len(warnings) == 1
