"""Error taxonomy for the delegation orchestrator.

Every error carries a ``user_message``: the human-readable cause that ends up in
terminal ``failed`` / ``timed_out`` events and in failed tool results.
"""

from __future__ import annotations

import asyncio
from typing import Optional


class DelegationAgentError(Exception):
    """Base exception for orchestrator errors."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class CompileError(DelegationAgentError):
    """Execution plan compilation failed. Never cached."""

    def __init__(self, agent_id: str, cause: Exception):
        super().__init__(
            f"Failed to compile plan for agent '{agent_id}': {type(cause).__name__}: {cause}",
            user_message=f"Agent '{agent_id}' could not be prepared: {cause}",
        )
        self.agent_id = agent_id
        self.cause = cause


class DelegationDepthExceeded(DelegationAgentError):
    """A delegation would nest deeper than the configured maximum."""

    def __init__(self, depth: int, max_depth: int):
        super().__init__(
            f"Delegation depth {depth} exceeds maximum {max_depth}",
            user_message=f"Delegation refused: nesting depth {depth} is above the limit of {max_depth}.",
        )
        self.depth = depth
        self.max_depth = max_depth


class UnknownAgentError(DelegationAgentError):
    """Referenced agent id is not registered."""

    def __init__(self, agent_id: str):
        super().__init__(f"Unknown agent: {agent_id}", user_message=f"No agent named '{agent_id}' is available.")
        self.agent_id = agent_id


class DelegationFailed(DelegationAgentError):
    """A delegated child execution ended without an answer."""

    def __init__(self, agent_id: str, cause: str):
        super().__init__(f"Delegation to '{agent_id}' failed: {cause}", user_message=f"Agent '{agent_id}' could not complete the task: {cause}")
        self.agent_id = agent_id


class ToolTimeout(DelegationAgentError):
    """A single tool call exceeded its per-call timeout."""

    def __init__(self, tool_name: str, timeout_s: float):
        super().__init__(
            f"Tool '{tool_name}' timed out after {timeout_s:.2f}s",
            user_message=f"Tool '{tool_name}' did not finish within {timeout_s:.1f}s.",
        )
        self.tool_name = tool_name
        self.timeout_s = timeout_s


class ToolError(DelegationAgentError):
    """A single tool call raised or was not callable."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}", user_message=f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class CheckpointWriteFailure(DelegationAgentError):
    """Checkpoint could not be written.

    ``fatal`` is True when retrying cannot help (e.g. the state is not
    serializable); otherwise the retries were exhausted and the execution may
    continue in memory.
    """

    def __init__(self, thread_id: str, message: str, *, fatal: bool = False, attempts: int = 0):
        super().__init__(
            f"Checkpoint write for thread '{thread_id}' failed after {attempts} attempt(s): {message}",
            user_message=f"Progress could not be saved: {message}",
        )
        self.thread_id = thread_id
        self.fatal = fatal
        self.attempts = attempts


class InterruptTimeout(DelegationAgentError):
    """No human response arrived within the wait bound."""

    def __init__(self, execution_id: str, timeout_s: float):
        super().__init__(
            f"No response for execution '{execution_id}' within {timeout_s:.2f}s",
            user_message="Still waiting for your approval; the request stays paused.",
        )
        self.execution_id = execution_id
        self.timeout_s = timeout_s


class BudgetExceeded(DelegationAgentError):
    """A time or work budget ran out."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, user_message=user_message or f"Time budget exhausted: {message}")


class ModelUnavailable(DelegationAgentError):
    """An agent's model circuit is open; calls fail fast until it recovers."""

    def __init__(self, agent_id: str, retry_after_s: float):
        super().__init__(
            f"Model circuit for agent '{agent_id}' is open (retry in {retry_after_s:.1f}s)",
            user_message=f"The model for '{agent_id}' is failing repeatedly; try again in {retry_after_s:.0f}s.",
        )
        self.agent_id = agent_id
        self.retry_after_s = retry_after_s


class InvalidTransition(DelegationAgentError):
    """Illegal execution or interrupt state change."""


def describe_error(error: BaseException) -> str:
    """Turn any exception into a human-readable cause."""
    if isinstance(error, DelegationAgentError):
        return error.user_message
    if isinstance(error, asyncio.TimeoutError):
        return "Operation timed out."
    if isinstance(error, asyncio.CancelledError):
        return "Execution was cancelled."
    text = str(error).strip()
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


__all__ = [
    "DelegationAgentError",
    "CompileError",
    "DelegationDepthExceeded",
    "UnknownAgentError",
    "DelegationFailed",
    "ToolTimeout",
    "ToolError",
    "CheckpointWriteFailure",
    "InterruptTimeout",
    "BudgetExceeded",
    "ModelUnavailable",
    "InvalidTransition",
    "describe_error",
]
