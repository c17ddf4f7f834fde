"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root (and this directory, for ``fakes``) is in PYTHONPATH
tests_dir = Path(__file__).parent
project_root = tests_dir.parent
for path in (str(project_root), str(tests_dir)):
    if path not in sys.path:
        sys.path.insert(0, path)

from delegationAgent.agents import AgentRegistry  # noqa: E402
from delegationAgent.hitl import ApprovalChecker  # noqa: E402
from fakes import FakeClock, ToolCounter, default_agents, make_settings  # noqa: E402


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def agent_registry():
    return AgentRegistry(default_agents())


@pytest.fixture
def approval_checker():
    """No YAML rules file: only agent approval tools and custom checkers apply."""
    return ApprovalChecker()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def tool_counter():
    return ToolCounter()
