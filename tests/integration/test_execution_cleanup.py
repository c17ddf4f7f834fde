"""Per-execution bookkeeping is dropped once executions are terminal."""

import asyncio

import pytest
from langchain_core.messages import AIMessage

from delegationAgent.runtime.models import EventType
from delegationAgent.utils.errors import InvalidTransition
from fakes import (
    ScriptedChatModel,
    ScriptedResolver,
    ToolCounter,
    ai_tool_calls,
    build_test_orchestrator,
    make_settings,
    make_tool,
    tool_call,
)


@pytest.mark.asyncio
async def test_delegation_threads_are_released():
    orchestrator = build_test_orchestrator(ScriptedResolver())
    store = orchestrator.context.checkpoints.store

    for i in range(5):
        result = await orchestrator.run("supervisor", f"alice:g{i}", "@researcher find sources")
        assert result.ok

    assert orchestrator.context.checkpoints.tracked_threads() == 0
    assert orchestrator.context.budget.usage_count() == 0
    # Every top-level and child thread is still persisted
    assert len(store.threads()) == 10


@pytest.mark.asyncio
async def test_drained_runs_are_not_retained():
    orchestrator = build_test_orchestrator(
        ScriptedResolver({"researcher": ScriptedChatModel(fallback="found it")}),
        settings=make_settings(runtime={"retained_results": 2}),
    )

    execution_ids = []
    for i in range(5):
        execution_id = await orchestrator.start("researcher", f"alice:d{i}", "find sources")
        events = [event async for event in orchestrator.events(execution_id)]
        assert events[-1].type == EventType.COMPLETED
        execution_ids.append(execution_id)
    await asyncio.sleep(0)

    assert orchestrator.running_executions() == []
    with pytest.raises(KeyError):
        await orchestrator.wait(execution_ids[0])
    latest = await orchestrator.wait(execution_ids[-1])
    assert latest.final_answer == "found it"
    with pytest.raises(KeyError):
        await orchestrator.wait(execution_ids[-1])


@pytest.mark.asyncio
async def test_answered_top_level_interrupt_is_cleared():
    engineer = ScriptedChatModel([
        ai_tool_calls(tool_call("run_command", {"command": "systemctl restart app"}, "c1")),
        AIMessage(content="Restarted"),
    ])
    orchestrator = build_test_orchestrator(
        ScriptedResolver({"engineer": engineer}),
        tools=[make_tool("run_command", counter=ToolCounter())],
    )

    execution_id = await orchestrator.start("engineer", "ops:c1", "Restart the app service", stream=False)
    assert (await orchestrator.wait(execution_id)).paused
    assert orchestrator.context.interrupts.get(execution_id) is not None

    await orchestrator.resume(execution_id, True, stream=False)
    with pytest.raises(InvalidTransition):
        await orchestrator.resume(execution_id, True)
    assert (await orchestrator.wait(execution_id)).ok

    assert orchestrator.context.interrupts.get(execution_id) is None
    assert orchestrator.pending_interrupts() == []
    assert orchestrator.context.checkpoints.tracked_threads() == 0
