"""Agent configuration schema.

Agent 配置在加载时一次性解析为不可变的 AgentConfig。编排器只根据能力标志
（can_delegate、tool_names、parallel_tools）分支，从不根据 agent 名称分支。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Tuple, Union


@dataclass(frozen=True, slots=True)
class KeywordRule:
    """A routing keyword with an optional weight.

    Attributes:
        keyword: Lower-case phrase to look for in the user request
        weight: Score contribution when matched
        whole_word: Match on word boundaries instead of substring
    """

    keyword: str
    weight: float = 1.0
    whole_word: bool = False


@dataclass(frozen=True)
class AgentConfig:
    """Immutable agent definition.

    Attributes:
        # ========== Identity ==========
        id: Unique agent id (also the @mention handle)
        name: Display name
        description: One-line capability summary shown to routers

        # ========== Behaviour ==========
        prompt_template: System prompt; ``{agent_name}``, ``{agent_id}``,
            ``{description}`` and ``{delegates}`` are substituted
        tool_names: Tools this agent may call
        can_delegate: Whether this agent may hand work to other agents
        parallel_tools: Run a step's tool calls concurrently (False = sequential,
            stop on first failure)

        # ========== Routing / governance ==========
        keywords: Routing keywords for the heuristic classifier
        tags: Free-form tags (also used as routing keywords)
        approval_tools: Tools that always need human approval for this agent
        enabled: Whether the agent is available at startup
    """

    # ========== Identity ==========
    id: str
    name: str = ""
    description: str = ""

    # ========== Behaviour ==========
    prompt_template: str = "You are {agent_name}. {description}"
    tool_names: FrozenSet[str] = field(default_factory=frozenset)
    can_delegate: bool = False
    parallel_tools: bool = True

    # ========== Routing / governance ==========
    keywords: Tuple[KeywordRule, ...] = ()
    tags: Tuple[str, ...] = ()
    approval_tools: FrozenSet[str] = field(default_factory=frozenset)
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("AgentConfig.id must not be empty")
        if not self.name:
            object.__setattr__(self, "name", self.id)

    def render_prompt(self, delegates: str = "") -> str:
        """Format the system prompt for this agent."""
        return self.prompt_template.format(
            agent_name=self.name,
            agent_id=self.id,
            description=self.description,
            delegates=delegates,
        )

    def with_changes(self, **changes: Any) -> "AgentConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


def parse_keyword(entry: Union[str, Dict[str, Any]]) -> KeywordRule:
    """Parse a keyword entry from YAML (``"calendar"`` or ``{k: ..., w: 2, match: word}``)."""
    if isinstance(entry, str):
        return KeywordRule(keyword=entry.lower())
    keyword = entry.get("k") or entry.get("keyword")
    if not keyword:
        raise ValueError(f"Keyword entry without 'k': {entry!r}")
    return KeywordRule(
        keyword=str(keyword).lower(),
        weight=float(entry.get("w", entry.get("weight", 1.0))),
        whole_word=entry.get("match") == "word",
    )
