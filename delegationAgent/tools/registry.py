"""Tool instance registration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from langchain_core.tools import BaseTool

from delegationAgent.agents.schema import AgentConfig


@dataclass(frozen=True, slots=True)
class ToolMeta:
    """Describes governance attributes for a tool."""

    name: str
    risk: str = "low"
    timeout_s: Optional[float] = None  # Overrides the tool-layer default when shorter


class ToolRegistry:
    """Tracks tool instances and governance metadata, addressed by name."""

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None, meta: Optional[Iterable[ToolMeta]] = None) -> None:
        self._tools: Dict[str, BaseTool] = {}
        self._meta: Dict[str, ToolMeta] = {}
        if tools:
            for tool in tools:
                self.register_tool(tool)
        if meta:
            for item in meta:
                self.register_meta(item)

    def register_tool(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def register_meta(self, metadata: ToolMeta) -> None:
        self._meta[metadata.name] = metadata

    def get_tool(self, name: str) -> BaseTool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def get_meta_optional(self, name: str) -> ToolMeta | None:
        return self._meta.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def allowed_tools(self, allowlist: Optional[Iterable[str]]) -> List[BaseTool]:
        if not allowlist:
            return []
        return [self._tools[name] for name in sorted(allowlist) if name in self._tools]

    def tools_for(self, agent: AgentConfig) -> List[BaseTool]:
        """Registered tools the agent is allowed to call."""
        return self.allowed_tools(agent.tool_names)
