"""Execution runtime: state machine, budgets, events and the orchestrator."""
