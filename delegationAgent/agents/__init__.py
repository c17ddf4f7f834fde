"""Agent configuration and registry."""

from .interfaces import BindToolsResolver, ChatRunnable, ModelResolver
from .registry import AgentRegistry
from .scanner import load_agents_config, parse_agent_config, scan_agents_from_config
from .schema import AgentConfig, KeywordRule, parse_keyword

__all__ = [
    "BindToolsResolver",
    "ChatRunnable",
    "ModelResolver",
    "AgentRegistry",
    "load_agents_config",
    "parse_agent_config",
    "scan_agents_from_config",
    "AgentConfig",
    "KeywordRule",
    "parse_keyword",
]
