"""Interfaces for model dependencies.

The language model is an opaque capability: messages in, an ``AIMessage`` (plain
answer or tool calls) out. Any LangChain chat model satisfies ``ChatRunnable``.
"""

from __future__ import annotations

from typing import Any, List, Protocol, Sequence

from langchain_core.messages import BaseMessage

from .schema import AgentConfig


class ChatRunnable(Protocol):
    """Anything with LangChain's async ``ainvoke`` over a message list."""

    async def ainvoke(self, input: List[BaseMessage], config: Any = None, **kwargs: Any) -> BaseMessage:
        ...


class ModelResolver(Protocol):
    """Callable that returns a model runnable for an agent and its visible tools."""

    def __call__(self, agent: AgentConfig, tools: Sequence[Any]) -> ChatRunnable:
        ...


class BindToolsResolver:
    """Resolver over a per-agent chat model factory.

    Binds the agent's visible tools with ``bind_tools`` when there are any.

    Example:
        >>> resolver = BindToolsResolver(lambda agent: ChatSomething(model="..."))
    """

    def __init__(self, model_factory):
        self._model_factory = model_factory

    def __call__(self, agent: AgentConfig, tools: Sequence[Any]) -> ChatRunnable:
        model = self._model_factory(agent)
        if tools:
            return model.bind_tools(list(tools))
        return model
