"""Top-level package exports for delegationAgent."""

from .runtime.app import CheckpointSummary, Orchestrator, build_orchestrator

__all__ = ["CheckpointSummary", "Orchestrator", "build_orchestrator"]
