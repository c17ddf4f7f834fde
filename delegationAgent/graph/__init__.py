"""Execution plan: state, routing and node builders."""

from .builder import PlanDependencies, build_plan_graph, plan_factory
from .routing import build_entry_route, next_node
from .state import ExecutionState, new_execution_state

__all__ = [
    "PlanDependencies",
    "build_plan_graph",
    "plan_factory",
    "build_entry_route",
    "next_node",
    "ExecutionState",
    "new_execution_state",
]
