"""Agent scanner - 从 agents.yaml 扫描并注册 agents

负责：
1. 从 agents.yaml 读取 agent 配置
2. 解析为不可变的 AgentConfig
3. 注册到 AgentRegistry
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .registry import AgentRegistry
from .schema import AgentConfig, parse_keyword
from delegationAgent.config.project_root import resolve_project_path

LOGGER = logging.getLogger(__name__)


def parse_agent_config(agent_id: str, config: Dict[str, Any]) -> AgentConfig:
    """从 YAML 配置解析 AgentConfig

    Args:
        agent_id: Agent ID
        config: Agent 配置字典

    Returns:
        AgentConfig 实例

    Raises:
        ValueError: 配置字段不合法
    """
    # ========== Identity ==========
    name = config.get("name", agent_id)
    description = config.get("description", "")

    # ========== Behaviour ==========
    prompt_template = config.get("prompt_template") or "You are {agent_name}. {description}"
    tool_names = frozenset(config.get("tools", []) or [])
    can_delegate = bool(config.get("can_delegate", False))
    parallel_tools = bool(config.get("parallel_tools", True))

    # ========== Routing / governance ==========
    keywords = tuple(parse_keyword(entry) for entry in config.get("keywords", []) or [])
    tags = tuple(str(tag).lower() for tag in config.get("tags", []) or [])
    approval_tools = frozenset(config.get("approval_tools", []) or [])

    return AgentConfig(
        id=agent_id,
        name=name,
        description=description,
        prompt_template=prompt_template,
        tool_names=tool_names,
        can_delegate=can_delegate,
        parallel_tools=parallel_tools,
        keywords=keywords,
        tags=tags,
        approval_tools=approval_tools,
        enabled=bool(config.get("enabled", True)),
    )


def load_agents_config(config_path: Path | str) -> Dict[str, Any]:
    """加载 agents.yaml 配置文件

    Raises:
        FileNotFoundError: 配置文件不存在
        yaml.YAMLError: YAML 解析错误
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Agent config not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    LOGGER.debug(f"Loaded agent config from {config_path}")
    return config


def scan_agents_from_config(config_path: Optional[Path | str] = None) -> AgentRegistry:
    """从 agents.yaml 扫描并注册 agents

    Args:
        config_path: agents.yaml 路径（可选，默认使用项目配置）

    Returns:
        填充好的 AgentRegistry
    """
    registry = AgentRegistry()

    if config_path is None:
        config_path = resolve_project_path("delegationAgent/config/agents.yaml")
    else:
        config_path = resolve_project_path(config_path)

    config = load_agents_config(config_path)

    if not config.get("global", {}).get("enabled", True):
        LOGGER.info("Agents system is disabled in config")
        return registry

    for agent_id, agent_config in (config.get("agents") or {}).items():
        try:
            agent = parse_agent_config(agent_id, agent_config or {})
        except (TypeError, ValueError) as e:
            LOGGER.error(f"Failed to register agent '{agent_id}': {e}")
            continue
        registry.register(agent)
        LOGGER.info(f"Registered agent: {agent_id} ({agent.name})")

    LOGGER.info(f"Agent scan complete: {len(registry)} enabled")
    return registry
