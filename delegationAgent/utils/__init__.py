"""Utilities for the delegation orchestrator."""

from .errors import (
    BudgetExceeded,
    CheckpointWriteFailure,
    CompileError,
    DelegationAgentError,
    DelegationDepthExceeded,
    DelegationFailed,
    InterruptTimeout,
    InvalidTransition,
    ModelUnavailable,
    ToolError,
    ToolTimeout,
    UnknownAgentError,
    describe_error,
)
from .logging_utils import (
    get_logger,
    log_delegation,
    log_error,
    log_node_entry,
    log_node_exit,
    log_routing_decision,
    log_state_transition,
    log_tool_call,
    log_tool_result,
    setup_logging,
    setup_logging_from_settings,
)
from .resilience import CircuitBreaker, CircuitState, ModelCallGuard, is_transient_error
from .retry import RetryExhausted, RetryPolicy, retry_async

__all__ = [
    "BudgetExceeded",
    "CheckpointWriteFailure",
    "CompileError",
    "DelegationAgentError",
    "DelegationDepthExceeded",
    "DelegationFailed",
    "InterruptTimeout",
    "InvalidTransition",
    "ModelUnavailable",
    "ToolError",
    "ToolTimeout",
    "UnknownAgentError",
    "describe_error",
    "get_logger",
    "log_delegation",
    "log_error",
    "log_node_entry",
    "log_node_exit",
    "log_routing_decision",
    "log_state_transition",
    "log_tool_call",
    "log_tool_result",
    "setup_logging",
    "setup_logging_from_settings",
    "RetryExhausted",
    "RetryPolicy",
    "retry_async",
    "CircuitBreaker",
    "CircuitState",
    "ModelCallGuard",
    "is_transient_error",
]
