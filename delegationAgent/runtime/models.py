"""Runtime data model: executions, delegation requests, tool calls and events."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from langchain_core.messages import ToolMessage

from delegationAgent.utils.errors import InvalidTransition, describe_error


# ========== Execution state machine ==========

class ExecutionStatus(str, Enum):
    """Lifecycle of one execution."""

    CREATED = "created"
    ROUTING = "routing"
    EXECUTING = "executing"
    DELEGATING = "delegating"
    AWAITING_INPUT = "awaiting_input"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT}
)

_ABORT = {ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT}

# failed / timed_out are reachable from every non-terminal state
ALLOWED_TRANSITIONS: Mapping[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.CREATED: frozenset({
        ExecutionStatus.ROUTING, ExecutionStatus.EXECUTING, *_ABORT,
    }),
    ExecutionStatus.ROUTING: frozenset({
        ExecutionStatus.EXECUTING, ExecutionStatus.DELEGATING, ExecutionStatus.AWAITING_INPUT, *_ABORT,
    }),
    ExecutionStatus.EXECUTING: frozenset({
        ExecutionStatus.DELEGATING, ExecutionStatus.AWAITING_INPUT, ExecutionStatus.COMPLETING, *_ABORT,
    }),
    ExecutionStatus.DELEGATING: frozenset({
        ExecutionStatus.EXECUTING, *_ABORT,
    }),
    ExecutionStatus.AWAITING_INPUT: frozenset({
        ExecutionStatus.EXECUTING, ExecutionStatus.DELEGATING, ExecutionStatus.COMPLETING, *_ABORT,
    }),
    ExecutionStatus.COMPLETING: frozenset({
        ExecutionStatus.COMPLETED, *_ABORT,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.TIMED_OUT: frozenset(),
}


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex[:12]}"


@dataclass
class Execution:
    """One run of one agent.

    Owned exclusively by the ExecutionManager that created it. ``deadline`` is an
    absolute wall-clock time (seconds since the epoch).
    """

    execution_id: str
    thread_id: str
    agent_id: str
    deadline: float
    parent_execution_id: Optional[str] = None
    depth: int = 0
    status: ExecutionStatus = ExecutionStatus.CREATED
    user_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    unpersisted_risk: bool = False
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def can_transition(self, new_status: ExecutionStatus) -> bool:
        return new_status == self.status or new_status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, new_status: ExecutionStatus) -> bool:
        """Advance the state machine.

        Returns:
            True when the status changed, False for a same-state transition

        Raises:
            InvalidTransition: The transition is not allowed
        """
        if new_status == self.status:
            return False
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Execution {self.execution_id}: {self.status.value} → {new_status.value} is not allowed"
            )
        self.status = new_status
        return True

    def budget_remaining_ms(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, int((self.deadline - now) * 1000))

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly identity used in checkpoint metadata."""
        return {
            "execution_id": self.execution_id,
            "thread_id": self.thread_id,
            "agent_id": self.agent_id,
            "parent_execution_id": self.parent_execution_id,
            "depth": self.depth,
            "status": self.status.value,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "error": self.error,
        }

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any], *, deadline: float) -> "Execution":
        """Rebuild an execution from checkpoint metadata with a fresh deadline."""
        return cls(
            execution_id=snapshot["execution_id"],
            thread_id=snapshot["thread_id"],
            agent_id=snapshot["agent_id"],
            deadline=deadline,
            parent_execution_id=snapshot.get("parent_execution_id"),
            depth=int(snapshot.get("depth", 0)),
            status=ExecutionStatus(snapshot.get("status", ExecutionStatus.CREATED.value)),
            user_id=snapshot.get("user_id"),
            created_at=float(snapshot.get("created_at") or time.time()),
            error=snapshot.get("error"),
        )


# ========== Delegation ==========

@dataclass(frozen=True)
class DelegationRequest:
    """Directive from one agent to another. Immutable once issued."""

    from_agent_id: str
    to_agent_id: str
    task_description: str
    timeout_ms: int
    depth: int
    parent_execution_id: Optional[str] = None
    parent_thread_id: Optional[str] = None
    user_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    source: str = "tool_call"


# ========== Tool calls ==========

class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ToolCall:
    """One invocation of an external capability. Lives for one batch."""

    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def from_message_call(cls, call: Mapping[str, Any]) -> "ToolCall":
        """Build from a LangChain ``AIMessage.tool_calls`` entry."""
        return cls(id=call.get("id") or f"call_{uuid.uuid4().hex[:8]}", name=call["name"], args=dict(call.get("args") or {}))


@dataclass(frozen=True)
class ToolResult:
    """Terminal outcome of one tool call (or delegation)."""

    call_id: str
    name: str
    status: ToolCallStatus
    content: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ToolCallStatus.SUCCEEDED

    @classmethod
    def success(cls, call: ToolCall, content: str, duration_s: float = 0.0) -> "ToolResult":
        return cls(call_id=call.id, name=call.name, status=ToolCallStatus.SUCCEEDED, content=content, duration_s=duration_s)

    @classmethod
    def failure(cls, call: ToolCall, error: BaseException, duration_s: float = 0.0) -> "ToolResult":
        return cls(
            call_id=call.id,
            name=call.name,
            status=ToolCallStatus.FAILED,
            error=describe_error(error),
            error_kind=type(error).__name__,
            duration_s=duration_s,
        )

    def to_message(self) -> ToolMessage:
        if self.ok:
            return ToolMessage(content=self.content, tool_call_id=self.call_id, name=self.name)
        return ToolMessage(
            content=f"Error ({self.error_kind}): {self.error}",
            tool_call_id=self.call_id,
            name=self.name,
            status="error",
        )


# ========== Events ==========

class EventType(str, Enum):
    ROUTING = "routing"
    DELEGATING = "delegating"
    EXECUTING = "executing"
    TOOL_STARTED = "tool_started"
    TOOL_FINISHED = "tool_finished"
    INTERRUPT_RAISED = "interrupt_raised"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


STATUS_EVENTS: Mapping[ExecutionStatus, EventType] = {
    ExecutionStatus.ROUTING: EventType.ROUTING,
    ExecutionStatus.EXECUTING: EventType.EXECUTING,
    ExecutionStatus.DELEGATING: EventType.DELEGATING,
    ExecutionStatus.COMPLETED: EventType.COMPLETED,
    ExecutionStatus.FAILED: EventType.FAILED,
    ExecutionStatus.TIMED_OUT: EventType.TIMED_OUT,
}


@dataclass(frozen=True)
class Event:
    """Progress event. Ordered within one execution."""

    type: EventType
    execution_id: str
    timestamp: float
    payload: Dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    parent_execution_id: Optional[str] = None
    depth: int = 0
    sequence: int = 0
    unpersisted_risk: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.COMPLETED, EventType.FAILED, EventType.TIMED_OUT)


# ========== Results ==========

@dataclass(frozen=True)
class ExecutionResult:
    """Immutable outcome handed back to the caller (or to a parent execution)."""

    execution_id: str
    thread_id: str
    agent_id: str
    status: ExecutionStatus
    final_answer: Optional[str] = None
    error: Optional[str] = None
    interrupt: Optional[Dict[str, Any]] = None
    checkpoint_id: Optional[int] = None
    unpersisted_risk: bool = False
    depth: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def paused(self) -> bool:
        return self.status == ExecutionStatus.AWAITING_INPUT
