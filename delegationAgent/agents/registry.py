"""Agent Registry - 加载后的 AgentConfig 注册表

架构（两层）：
- _discovered: 所有扫描到的 agents（不论是否启用）
- _enabled: 已启用的 agents（可被执行或作为委派目标）

配置更新通过 update() 完成，调用方负责随后失效对应的编译缓存。
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from .schema import AgentConfig

LOGGER = logging.getLogger(__name__)


class AgentRegistry:
    """Agent 注册表"""

    def __init__(self, agents: Optional[List[AgentConfig]] = None):
        self._discovered: Dict[str, AgentConfig] = {}
        self._enabled: Dict[str, AgentConfig] = {}
        self._lock = threading.Lock()
        for agent in agents or []:
            self.register(agent)

    # ========== Registration Methods ==========

    def register(self, agent: AgentConfig) -> None:
        """注册 agent，enabled=True 时同时启用

        Args:
            agent: Agent 配置
        """
        with self._lock:
            self._discovered[agent.id] = agent
            if agent.enabled:
                self._enabled[agent.id] = agent
            else:
                self._enabled.pop(agent.id, None)
        LOGGER.debug(f"Registered agent: {agent.id} ({agent.name}, enabled={agent.enabled})")

    def enable_agent(self, agent_id: str) -> AgentConfig:
        """启用一个已发现的 agent

        Raises:
            KeyError: Agent 未被发现
        """
        with self._lock:
            if agent_id not in self._discovered:
                raise KeyError(f"Agent not found in discovered agents: {agent_id}")
            agent = self._discovered[agent_id]
            self._enabled[agent_id] = agent
        LOGGER.info(f"Enabled agent: {agent_id} ({agent.name})")
        return agent

    def update(self, agent: AgentConfig) -> Optional[AgentConfig]:
        """替换 agent 配置，返回旧配置（不存在时为 None）"""
        previous = self._discovered.get(agent.id)
        self.register(agent)
        LOGGER.info(f"Updated agent configuration: {agent.id}")
        return previous

    # ========== Query Methods ==========

    def get(self, agent_id: str) -> Optional[AgentConfig]:
        """获取已启用的 agent 配置，未启用返回 None"""
        return self._enabled.get(agent_id)

    def require(self, agent_id: str) -> AgentConfig:
        """获取已启用的 agent 配置

        Raises:
            KeyError: Agent 不存在或未启用
        """
        agent = self._enabled.get(agent_id)
        if agent is None:
            raise KeyError(f"Unknown agent: {agent_id}")
        return agent

    def is_enabled(self, agent_id: str) -> bool:
        return agent_id in self._enabled

    def list_enabled(self) -> List[AgentConfig]:
        return list(self._enabled.values())

    def list_discovered(self) -> List[AgentConfig]:
        return list(self._discovered.values())

    def delegation_targets(self, from_agent_id: str) -> List[AgentConfig]:
        """可作为委派目标的 agents（排除自身）"""
        return [agent for agent in self._enabled.values() if agent.id != from_agent_id]

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._enabled

    def __len__(self) -> int:
        return len(self._enabled)
