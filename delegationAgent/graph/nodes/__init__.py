"""Node builders for the execution plan."""

from .agent import build_agent_node
from .approval import build_approval_node
from .finalize import build_finalize_node
from .route import build_route_node
from .tools import build_tools_node

__all__ = [
    "build_agent_node",
    "build_approval_node",
    "build_finalize_node",
    "build_route_node",
    "build_tools_node",
]
