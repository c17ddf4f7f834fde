"""Tests for agent configuration loading and the registry."""

from pathlib import Path

import pytest

import delegationAgent
from delegationAgent.agents import (
    AgentConfig,
    AgentRegistry,
    KeywordRule,
    load_agents_config,
    parse_agent_config,
    parse_keyword,
    scan_agents_from_config,
)

AGENTS_PATH = Path(delegationAgent.__file__).parent / "config" / "agents.yaml"


class TestSchema:
    def test_name_defaults_to_id(self):
        assert AgentConfig(id="helper").name == "helper"

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            AgentConfig(id="")

    def test_config_is_immutable(self):
        agent = AgentConfig(id="helper")
        with pytest.raises(AttributeError):
            agent.can_delegate = True

    def test_with_changes_returns_copy(self):
        agent = AgentConfig(id="helper")
        changed = agent.with_changes(description="new")
        assert changed.description == "new"
        assert agent.description == ""

    def test_render_prompt(self):
        agent = AgentConfig(id="helper", name="Helper", prompt_template="{agent_name}|{agent_id}|{delegates}")
        assert agent.render_prompt("- a") == "Helper|helper|- a"

    def test_parse_keyword(self):
        assert parse_keyword("Calendar") == KeywordRule(keyword="calendar")
        assert parse_keyword({"k": "API", "w": 2, "match": "word"}) == KeywordRule("api", 2.0, True)
        with pytest.raises(ValueError):
            parse_keyword({"w": 2})


class TestScanner:
    def test_scan_bundled_agents(self):
        registry = scan_agents_from_config(AGENTS_PATH)

        assert {"supervisor", "researcher", "engineer", "scheduler"} <= {a.id for a in registry.list_enabled()}
        engineer = registry.require("engineer")
        assert engineer.can_delegate
        assert "run_command" in engineer.approval_tools
        assert not registry.require("scheduler").parallel_tools

    def test_parse_agent_config_defaults(self):
        agent = parse_agent_config("helper", {})
        assert agent.name == "helper"
        assert agent.parallel_tools
        assert agent.tool_names == frozenset()

    def test_invalid_agent_is_skipped(self, tmp_path):
        path = tmp_path / "agents.yaml"
        path.write_text(
            "agents:\n"
            "  good:\n"
            "    name: Good\n"
            "  bad:\n"
            "    keywords:\n"
            "      - {w: 2}\n",
            encoding="utf-8",
        )

        registry = scan_agents_from_config(path)

        assert "good" in registry
        assert "bad" not in registry

    def test_disabled_system(self, tmp_path):
        path = tmp_path / "agents.yaml"
        path.write_text("global:\n  enabled: false\nagents:\n  a: {}\n", encoding="utf-8")
        assert len(scan_agents_from_config(path)) == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_agents_config(tmp_path / "nope.yaml")


class TestRegistry:
    def test_disabled_agent_is_discovered_not_enabled(self):
        registry = AgentRegistry([AgentConfig(id="a"), AgentConfig(id="b", enabled=False)])

        assert registry.get("b") is None
        assert len(registry.list_discovered()) == 2
        registry.enable_agent("b")
        assert registry.is_enabled("b")

    def test_require_unknown(self, agent_registry):
        with pytest.raises(KeyError):
            agent_registry.require("nobody")
        with pytest.raises(KeyError):
            agent_registry.enable_agent("nobody")

    def test_update_returns_previous(self, agent_registry):
        previous = agent_registry.require("researcher")
        updated = previous.with_changes(description="Now with citations.")

        assert agent_registry.update(updated) is previous
        assert agent_registry.require("researcher").description == "Now with citations."

    def test_delegation_targets_exclude_self(self, agent_registry):
        targets = {agent.id for agent in agent_registry.delegation_targets("supervisor")}
        assert targets == {"researcher", "engineer"}
