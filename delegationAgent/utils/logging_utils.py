"""Logging utilities for the delegation orchestrator."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER_NAME = "delegationAgent"


def setup_logging(level: int = logging.INFO, log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Setup logging configuration for the orchestrator.

    Args:
        level: Console logging level (default: INFO)
        log_dir: Directory for the detailed log file. No file handler when None.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture all child logs, handlers filter
    logger.propagate = False

    logger.handlers = []

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        log_file = log_path / f"delegation_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        # File handler (detailed logs)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)
    else:
        log_file = None

    # Console handler (user-friendly)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("Delegation orchestrator session started")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def setup_logging_from_settings(observability: Any) -> logging.Logger:
    """Setup logging from ``ObservabilitySettings`` (``log_level`` / ``log_dir``).

    Unknown level names fall back to INFO.
    """
    level = logging.getLevelName(str(observability.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    return setup_logging(level, observability.log_dir)


def log_state_transition(logger: logging.Logger, execution_id: str, from_status: str, to_status: str) -> None:
    """Log an execution state machine transition.

    Args:
        logger: Logger instance
        execution_id: Execution being advanced
        from_status: Previous status
        to_status: New status
    """
    logger.info(f"Execution {execution_id}: {from_status} → {to_status}")


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    logger.info(f"Routing decision from {from_node}: → {decision}")
    if reason:
        logger.debug(f"  → Reason: {reason}")


def log_delegation(logger: logging.Logger, from_agent: str, to_agent: str, depth: int, source: str) -> None:
    """Log a delegation handoff.

    Args:
        logger: Logger instance
        from_agent: Delegating agent id
        to_agent: Target agent id
        depth: Depth of the child execution
        source: What selected the target (mention/heuristic/model/tool_call)
    """
    logger.info(f"Delegation: {from_agent} → {to_agent} (depth={depth}, via {source})")


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log tool invocation.

    Args:
        logger: Logger instance
        tool_name: Name of the tool being called
        args: Tool arguments
    """
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log tool execution result.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        result: Tool execution result
        success: Whether the tool executed successfully
    """
    status = "✓ Success" if success else "✗ Failed"
    logger.info(f"Tool result: {tool_name} - {status}")

    result_str = str(result)
    if len(result_str) > 500:
        result_str = result_str[:500] + "... (truncated)"
    logger.debug(f"  Result: {result_str}")


def log_node_entry(logger: logging.Logger, node_name: str, state: Dict[str, Any]) -> None:
    """Log node entry with a compact state snapshot.

    Args:
        logger: Logger instance
        node_name: Name of the node being entered
        state: Current state dictionary
    """
    logger.debug(
        f"ENTERING NODE: {node_name} | execution={state.get('execution_id')} "
        f"step={state.get('step')} messages={len(state.get('messages', []))} "
        f"cycles={state.get('agent_cycles', 0)} tool_calls={state.get('tool_call_count', 0)}"
    )


def log_node_exit(logger: logging.Logger, node_name: str, updates: Dict[str, Any]) -> None:
    """Log node exit with the keys it updated.

    Args:
        logger: Logger instance
        node_name: Name of the node being exited
        updates: Update dictionary returned by the node
    """
    logger.debug(f"EXITING NODE: {node_name} | updated={sorted(updates.keys())}")


def log_error(logger: logging.Logger, error: BaseException, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    logger.error(f"Error occurred: {type(error).__name__}: {str(error)}")
    if context:
        logger.error(f"  Context: {context}")
    logger.debug("Full traceback:", exc_info=error)


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the orchestrator namespace."""
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
