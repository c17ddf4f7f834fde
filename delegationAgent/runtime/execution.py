"""Execution manager: drives one agent's plan under a time budget.

For each execution it pulls the compiled plan from the GraphCache, streams it with
LangGraph, checkpoints after every finished step, surfaces interrupts and always
ends in exactly one terminal event (completed / failed / timed_out).

Delegated children run through the same manager (``spawn_child``) on their own
thread id, publish into the root's event channel and wait for human input inline.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from delegationAgent.graph.routing import next_node
from delegationAgent.graph.state import SCOPE_KEY, new_execution_state
from delegationAgent.hitl.interrupts import HumanResponse, InterruptStatus
from delegationAgent.persistence.checkpointer import derive_user_id
from delegationAgent.runtime.context import OrchestratorContext
from delegationAgent.runtime.events import EventChannel, EventPublisher
from delegationAgent.runtime.models import (
    STATUS_EVENTS,
    DelegationRequest,
    EventType,
    Execution,
    ExecutionResult,
    ExecutionStatus,
    new_execution_id,
)
from delegationAgent.runtime.timeouts import Layer
from delegationAgent.utils.errors import (
    BudgetExceeded,
    CheckpointWriteFailure,
    InterruptTimeout,
    describe_error,
)
from delegationAgent.utils.logging_utils import log_error, log_state_transition

LOGGER = logging.getLogger(__name__)


class ExecutionScope:
    """Per-run handle passed to the plan nodes through ``config["configurable"]``.

    Holds the execution, its event publisher and the latest streamed state.
    """

    def __init__(
        self,
        manager: "ExecutionManager",
        execution: Execution,
        channel: Optional[EventChannel],
        *,
        inline_hitl: bool = False,
    ):
        self.manager = manager
        self.execution = execution
        self.channel = channel
        self.publisher = EventPublisher(channel, execution)
        self.inline_hitl = inline_hitl
        self.state: Dict[str, Any] = {}
        self.last_checkpoint_id: Optional[int] = None

    async def emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None):
        return await self.publisher.emit(event_type, payload)

    async def transition(
        self,
        status: ExecutionStatus,
        *,
        emit: bool = True,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Advance the state machine and emit the matching status event.

        Raises:
            InvalidTransition: The transition is not allowed
        """
        previous = self.execution.status
        if not self.execution.transition_to(status):
            return False
        log_state_transition(LOGGER, self.execution.execution_id, previous.value, status.value)
        event_type = STATUS_EVENTS.get(status)
        if emit and event_type is not None:
            await self.emit(event_type, payload)
        return True

    async def spawn_child(self, request: DelegationRequest, deadline: float) -> ExecutionResult:
        return await self.manager.run_child(self, request, deadline)


def apply_human_response(state: Dict[str, Any], response: HumanResponse) -> Dict[str, Any]:
    """Fold a human answer into a paused state and point it at the tools step.

    - accept: flagged calls are approved and run as requested
    - edit: flagged calls run with the edited arguments
    - reject: flagged calls get an error result and never run
    - response: the reviewer's message becomes the flagged calls' result
    """
    state = dict(state)
    payload = state.get("pending_approval") or {}
    flagged = payload.get("tool_calls") or []
    flagged_ids = [call["id"] for call in flagged]

    messages = list(state.get("messages", []))
    approved = list(state.get("approved_tool_call_ids", []))
    completed = list(state.get("completed_tool_calls", []))

    if response.kind == "accept":
        approved.extend(flagged_ids)
    elif response.kind == "edit":
        edits = dict(response.edits)
        if response.args is not None and len(flagged_ids) == 1:
            edits.setdefault(flagged_ids[0], dict(response.args))
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if isinstance(message, AIMessage) and message.tool_calls:
                tool_calls = [
                    {**call, "args": edits[call["id"]]} if call.get("id") in edits else call
                    for call in message.tool_calls
                ]
                # Same id so the reducer and the transcript keep one message
                messages[index] = AIMessage(content=message.content, tool_calls=tool_calls, id=message.id)
                break
        approved.extend(flagged_ids)
    elif response.kind == "reject":
        note = response.message or "no reason given"
        for call in flagged:
            messages.append(ToolMessage(
                content=f"Tool call rejected by human reviewer: {note}",
                tool_call_id=call["id"],
                name=call["name"],
                status="error",
            ))
            completed.append(call["id"])
    else:
        for call in flagged:
            messages.append(ToolMessage(content=response.message or "", tool_call_id=call["id"], name=call["name"]))
            completed.append(call["id"])

    state.update(
        messages=messages,
        approved_tool_call_ids=approved,
        completed_tool_calls=completed,
        pending_approval=None,
        resume_at="tools",
    )
    return state


class ExecutionManager:
    """Runs executions to a terminal (or paused) state."""

    def __init__(self, context: OrchestratorContext):
        self.context = context
        self.settings = context.settings
        self.budget = context.budget
        self.checkpoints = context.checkpoints
        self.interrupts = context.interrupts

    # ========== Entry points ==========

    async def run(
        self,
        execution: Execution,
        state: Dict[str, Any],
        channel: Optional[EventChannel],
        *,
        inline_hitl: bool = False,
        entry_checkpoint: Optional[str] = "input",
    ) -> ExecutionResult:
        """Drive ``execution`` from ``state`` until it finishes or pauses.

        ``entry_checkpoint`` is the source tag of the checkpoint written before the
        first step (None to skip it).
        """
        scope = ExecutionScope(self, execution, channel, inline_hitl=inline_hitl)
        scope.state = dict(state)
        return await self._drive(scope, entry_checkpoint=entry_checkpoint)

    async def run_child(self, parent: ExecutionScope, request: DelegationRequest, deadline: float) -> ExecutionResult:
        """Run a delegated child execution under the delegation deadline."""
        parent_execution = parent.execution
        child = Execution(
            execution_id=new_execution_id(),
            thread_id=f"{parent_execution.thread_id}:delegation:{uuid.uuid4().hex[:8]}",
            agent_id=request.to_agent_id,
            deadline=deadline,
            parent_execution_id=parent_execution.execution_id,
            depth=request.depth,
            user_id=request.user_id or derive_user_id(parent_execution.thread_id, parent_execution.user_id),
        )
        try:
            child.deadline = self.budget.allocate(deadline, Layer.SUBAGENT)
        except BudgetExceeded as e:
            LOGGER.warning(f"No sub-agent budget for {request.to_agent_id}: {e}")
            return self._result(child, ExecutionStatus.TIMED_OUT, error=describe_error(e))

        state = new_execution_state(
            execution_id=child.execution_id,
            thread_id=child.thread_id,
            agent_id=child.agent_id,
            messages=[HumanMessage(content=request.task_description)],
            max_agent_cycles=self.settings.runtime.max_agent_cycles,
            user_id=child.user_id,
            depth=child.depth,
        )
        LOGGER.info(
            f"Child {child.execution_id} ({child.agent_id}, depth {child.depth}) "
            f"for {parent_execution.execution_id}, budget {self.budget.remaining_s(child.deadline):.1f}s"
        )
        return await self.run(child, state, parent.channel, inline_hitl=True)

    async def resume(
        self,
        execution: Execution,
        state: Dict[str, Any],
        channel: Optional[EventChannel],
        response: Optional[HumanResponse] = None,
    ) -> ExecutionResult:
        """Continue a checkpointed execution at its next pending step.

        With a ``response`` the paused approval is answered first; without one the
        execution continues after the last checkpointed step (crash recovery).
        """
        if response is not None:
            state = apply_human_response(state, response)
        elif state.get("phase"):
            following = next_node(state)
            if following not in ("pause", "end"):
                state = dict(state)
                state["resume_at"] = following
        LOGGER.info(f"Resuming {execution.execution_id} on {execution.thread_id} at {state.get('resume_at') or 'entry'}")
        return await self.run(
            execution, state, channel, entry_checkpoint="resume" if response is not None else None,
        )

    async def terminate(
        self,
        execution: Execution,
        state: Dict[str, Any],
        channel: Optional[EventChannel],
        status: ExecutionStatus,
        error: Any,
    ) -> ExecutionResult:
        """Terminally end an execution that is not running (e.g. cancel while paused)."""
        scope = ExecutionScope(self, execution, channel)
        scope.state = dict(state)
        try:
            return await self._finish_failed(scope, status, error)
        finally:
            self._release(execution)

    # ========== Driving ==========

    async def _drive(self, scope: ExecutionScope, *, entry_checkpoint: Optional[str] = None) -> ExecutionResult:
        execution = scope.execution
        try:
            if entry_checkpoint:
                await self._checkpoint(scope, scope.state, source=entry_checkpoint)
            plan = self.context.plan_for(execution.agent_id)
            while True:
                if scope.state.get("phase") == "finalize":
                    return await self._complete(scope)

                if scope.state.get("phase") == "approval" and scope.state.get("pending_approval"):
                    state = scope.state
                else:
                    state = await self._stream(scope, plan)

                if not state.get("pending_approval"):
                    return await self._complete(scope)

                paused = await self._pause(scope)
                if not scope.inline_hitl:
                    return paused
                response = await self._wait_inline(scope)
                scope.state = apply_human_response(scope.state, response)
                await self._checkpoint(scope, scope.state, source="resume")

        except (asyncio.TimeoutError, BudgetExceeded) as e:
            error = e if isinstance(e, BudgetExceeded) else BudgetExceeded(
                "execution exceeded its time budget",
                user_message=f"{execution.agent_id} ran out of time.",
            )
            return await self._finish_failed(scope, ExecutionStatus.TIMED_OUT, error)
        except InterruptTimeout as e:
            self.interrupts.expire(execution.execution_id)
            return await self._finish_failed(scope, ExecutionStatus.TIMED_OUT, e)
        except asyncio.CancelledError:
            status = ExecutionStatus.TIMED_OUT if self.budget.is_expired(execution.deadline) else ExecutionStatus.FAILED
            await self._finish_failed(scope, status, "cancelled")
            raise
        except Exception as e:
            log_error(LOGGER, e, f"execution {execution.execution_id} ({execution.agent_id})")
            return await self._finish_failed(scope, ExecutionStatus.FAILED, e)
        finally:
            if execution.is_terminal:
                self._release(execution)

    async def _stream(self, scope: ExecutionScope, plan: Any) -> Dict[str, Any]:
        """Stream the plan once (until it ends or pauses), checkpointing each step."""
        execution = scope.execution
        remaining = self.budget.ensure_time_left(execution.deadline, f"running {execution.agent_id}")
        config = {
            "configurable": {SCOPE_KEY: scope, "thread_id": execution.thread_id},
            "recursion_limit": self.settings.runtime.recursion_limit,
        }
        last_step = scope.state.get("step", 0)

        async def consume() -> None:
            nonlocal last_step
            async for values in plan.astream(scope.state, config=config, stream_mode="values"):
                step = values.get("step", 0)
                scope.state = dict(values)
                if step == last_step:
                    continue  # input echo
                last_step = step
                if self.checkpoints.should_checkpoint(values.get("phase")):
                    await self._checkpoint(scope, scope.state, source="step")

        await asyncio.wait_for(consume(), timeout=remaining)
        return scope.state

    async def _pause(self, scope: ExecutionScope) -> ExecutionResult:
        execution = scope.execution
        payload = dict(scope.state["pending_approval"])
        payload.update(
            execution_id=execution.execution_id,
            thread_id=execution.thread_id,
            agent_id=execution.agent_id,
            depth=execution.depth,
        )
        existing = self.interrupts.get(execution.execution_id)
        if existing is None or existing.status != InterruptStatus.RAISED:
            self.interrupts.raise_interrupt(execution.execution_id, execution.thread_id, payload, inline=scope.inline_hitl)

        await scope.transition(ExecutionStatus.AWAITING_INPUT, emit=False)
        await self._checkpoint(scope, scope.state, source="interrupt")
        await scope.emit(EventType.INTERRUPT_RAISED, payload)
        return self._result(execution, ExecutionStatus.AWAITING_INPUT, interrupt=payload, checkpoint_id=scope.last_checkpoint_id)

    async def _wait_inline(self, scope: ExecutionScope) -> HumanResponse:
        """Nested HITL: the child itself waits, bounded by its budget and the HITL timeout."""
        execution = scope.execution
        timeout = min(self.budget.remaining_s(execution.deadline), self.settings.hitl.wait_timeout_s)
        return await self.interrupts.wait_for_response(execution.execution_id, timeout_s=timeout)

    # ========== Terminal states ==========

    async def _complete(self, scope: ExecutionScope) -> ExecutionResult:
        execution = scope.execution
        await scope.transition(ExecutionStatus.COMPLETING, emit=False)
        await self._checkpoint(scope, scope.state, source="final", status=ExecutionStatus.COMPLETED)
        await scope.transition(ExecutionStatus.COMPLETED, emit=False)

        answer = scope.state.get("final_answer") or ""
        await scope.emit(EventType.COMPLETED, {
            "final_answer": answer,
            "checkpoint_id": scope.last_checkpoint_id,
        })
        LOGGER.info(f"Execution {execution.execution_id} ({execution.agent_id}) completed")
        return self._result(execution, ExecutionStatus.COMPLETED, final_answer=answer, checkpoint_id=scope.last_checkpoint_id)

    async def _finish_failed(self, scope: ExecutionScope, status: ExecutionStatus, error: Any) -> ExecutionResult:
        execution = scope.execution
        if execution.is_terminal:
            return self._result(execution, execution.status, error=execution.error)

        message = describe_error(error) if isinstance(error, BaseException) else str(error)
        execution.error = message
        try:
            await self._checkpoint(scope, scope.state, source="final", status=status)
        except CheckpointWriteFailure as e:
            LOGGER.error(f"Could not persist terminal state of {execution.execution_id}: {e}")

        await scope.transition(status, payload={"error": message})
        LOGGER.warning(f"Execution {execution.execution_id} ({execution.agent_id}) {status.value}: {message}")
        return self._result(execution, status, error=message, checkpoint_id=scope.last_checkpoint_id)

    # ========== Checkpoints ==========

    async def _checkpoint(
        self,
        scope: ExecutionScope,
        state: Dict[str, Any],
        *,
        source: str,
        status: Optional[ExecutionStatus] = None,
    ) -> Optional[int]:
        """Write a checkpoint; a non-fatal failure only flags the execution.

        Raises:
            CheckpointWriteFailure: The state cannot be serialized (fatal)
        """
        execution = scope.execution
        snapshot = execution.snapshot()
        if status is not None:
            snapshot["status"] = status.value
        metadata = {
            "execution": snapshot,
            "status": snapshot["status"],
            "phase": state.get("phase"),
            "step": state.get("step", 0),
            "source": source,
            "final_answer": state.get("final_answer"),
        }
        try:
            checkpoint = await self.checkpoints.write(execution.thread_id, state, metadata, user_id=execution.user_id)
        except CheckpointWriteFailure as e:
            if e.fatal:
                raise
            if not execution.unpersisted_risk:
                LOGGER.warning(f"Execution {execution.execution_id} continues unpersisted: {e}")
            execution.unpersisted_risk = True
            return None
        scope.last_checkpoint_id = checkpoint.checkpoint_id
        return checkpoint.checkpoint_id

    def _release(self, execution: Execution) -> None:
        """Drop per-execution bookkeeping once the execution is terminal."""
        self.budget.release(execution.execution_id)
        self.interrupts.clear(execution.execution_id)
        self.checkpoints.release(execution.thread_id)

    @staticmethod
    def _result(execution: Execution, status: ExecutionStatus, **fields: Any) -> ExecutionResult:
        return ExecutionResult(
            execution_id=execution.execution_id,
            thread_id=execution.thread_id,
            agent_id=execution.agent_id,
            status=status,
            unpersisted_risk=execution.unpersisted_risk,
            depth=execution.depth,
            **fields,
        )
