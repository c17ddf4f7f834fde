"""Tool registry, parallel dispatcher and the delegation tool schema."""

from .delegate import DELEGATE_TOOL_NAME, DelegateTaskArgs, delegate_tool_schema, is_delegation, parse_delegate_args
from .dispatcher import ToolDispatcher, stringify_output
from .registry import ToolMeta, ToolRegistry

__all__ = [
    "DELEGATE_TOOL_NAME",
    "DelegateTaskArgs",
    "delegate_tool_schema",
    "is_delegation",
    "parse_delegate_args",
    "ToolDispatcher",
    "stringify_output",
    "ToolMeta",
    "ToolRegistry",
]
