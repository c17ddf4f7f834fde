"""Shared state definition for the execution plan."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict, Annotated

from langchain_core.messages import BaseMessage
from langgraph.graph import add_messages


class ExecutionState(TypedDict, total=False):
    """State of one execution, checkpointed after every plan step.

    Everything needed to continue at the next pending step lives here: the
    conversation, the last finished node (``phase``) and which tool calls are
    already committed.
    """

    # ========== Messages ==========
    messages: Annotated[List[BaseMessage], add_messages]

    # ========== Identity ==========
    execution_id: str
    thread_id: str
    agent_id: str
    user_id: Optional[str]
    depth: int

    # ========== Step tracking ==========
    phase: Optional[str]      # Last finished node: route/agent/approval/tools/finalize
    step: int                 # Increments once per finished node
    resume_at: Optional[str]  # Entry node when re-entering the plan

    # ========== Routing ==========
    routing: Optional[Dict[str, Any]]  # Delegation decision of the route node

    # ========== Tool calls / HITL ==========
    pending_approval: Optional[Dict[str, Any]]  # Interrupt payload while paused
    approved_tool_call_ids: List[str]
    completed_tool_calls: List[str]             # Committed tool_call ids, never re-run

    # ========== Execution control ==========
    agent_cycles: int
    max_agent_cycles: int
    tool_call_count: int

    # ========== Outcome ==========
    final_answer: Optional[str]


def new_execution_state(
    *,
    execution_id: str,
    thread_id: str,
    agent_id: str,
    messages: List[BaseMessage],
    max_agent_cycles: int,
    user_id: Optional[str] = None,
    depth: int = 0,
) -> ExecutionState:
    """Initial state of a fresh execution."""
    return ExecutionState(
        messages=list(messages),
        execution_id=execution_id,
        thread_id=thread_id,
        agent_id=agent_id,
        user_id=user_id,
        depth=depth,
        phase=None,
        step=0,
        resume_at=None,
        routing=None,
        pending_approval=None,
        approved_tool_call_ids=[],
        completed_tool_calls=[],
        agent_cycles=0,
        max_agent_cycles=max_agent_cycles,
        tool_call_count=0,
        final_answer=None,
    )


SCOPE_KEY = "scope"


def scope_from_config(config: Optional[Dict[str, Any]]) -> Any:
    """Execution scope handed to the nodes through ``config["configurable"]``.

    Raises:
        RuntimeError: The plan was invoked without a scope
    """
    scope = ((config or {}).get("configurable") or {}).get(SCOPE_KEY)
    if scope is None:
        raise RuntimeError("Plan nodes need an execution scope in config['configurable']['scope']")
    return scope


def step_update(state: ExecutionState, phase: str, **updates: Any) -> Dict[str, Any]:
    """Node return value: marks ``phase`` finished and advances ``step``."""
    update: Dict[str, Any] = {
        "phase": phase,
        "step": int(state.get("step", 0)) + 1,
        "resume_at": None,
    }
    update.update(updates)
    return update
