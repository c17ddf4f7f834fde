"""Prompt fragments shared across plan nodes."""

from __future__ import annotations

from typing import Sequence

from delegationAgent.agents.schema import AgentConfig


DELEGATED_TASK_SUFFIX = """

<delegated_task>
This request was handed to you by another agent. Nobody can answer follow-up
questions: finish the task with what you have and return a complete answer.
</delegated_task>"""

CYCLE_LIMIT_NOTE = "(Stopped early: the agent cycle limit was reached before all tool calls finished.)"

NO_ANSWER_TEXT = "The agent finished without producing an answer."


def format_delegates(targets: Sequence[AgentConfig]) -> str:
    """Bullet list of delegation targets for ``{delegates}`` in prompt templates."""
    if not targets:
        return "(none available)"
    return "\n".join(f"- {agent.id}: {agent.description or agent.name}" for agent in targets)


def build_system_prompt(agent: AgentConfig, targets: Sequence[AgentConfig], depth: int = 0) -> str:
    """Agent system prompt, with the delegated-task reminder for child executions."""
    prompt = agent.render_prompt(delegates=format_delegates(targets))
    if depth > 0:
        prompt += DELEGATED_TASK_SUFFIX
    return prompt
