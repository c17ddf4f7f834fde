"""Message helpers shared by the graph nodes and the coordinator."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

STALE_TOOL_PREVIEW = 500


def stringify_content(content: Any) -> str:
    """Convert message content to string.

    Handles list content (multimodal messages), dict content with a "text"
    field and plain strings.
    """
    if isinstance(content, list):
        pieces: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                pieces.append(str(item["text"]))
            else:
                pieces.append(str(item))
        return "\n".join(pieces)
    return str(content)


def latest_user_text(messages: Sequence[BaseMessage]) -> str:
    """Text of the most recent human message ("" when there is none)."""
    for message in reversed(messages):
        if isinstance(message, HumanMessage):
            return stringify_content(message.content)
    return ""


def last_ai_message(messages: Sequence[BaseMessage]) -> Optional[AIMessage]:
    for message in reversed(messages):
        if isinstance(message, AIMessage):
            return message
    return None


def pending_tool_calls(messages: Sequence[BaseMessage], completed: Iterable[str] = ()) -> List[dict]:
    """Tool calls of the latest AI message that have no committed result yet.

    The AI message may be followed by tool messages answering some of its calls
    (e.g. calls a reviewer rejected); anything else after it means no calls are
    pending.
    """
    answered = set(completed)
    for message in reversed(messages):
        if isinstance(message, ToolMessage):
            answered.add(message.tool_call_id)
            continue
        if isinstance(message, AIMessage) and message.tool_calls:
            return [call for call in message.tool_calls if call.get("id") not in answered]
        return []
    return []


def filter_stale_tool_messages(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Prepare a previous turn's history for a new execution.

    Tool results become system breadcrumbs and AI tool-call requests are reduced
    to their text, so the model never sees tool messages without a live call.
    """
    filtered: List[BaseMessage] = []
    for message in messages:
        if isinstance(message, ToolMessage):
            content = stringify_content(message.content)
            if len(content) > STALE_TOOL_PREVIEW:
                content = content[:STALE_TOOL_PREVIEW] + "..."
            filtered.append(SystemMessage(content=f"[Tool result from previous session: {content}]"))
        elif isinstance(message, AIMessage) and message.tool_calls:
            text = stringify_content(message.content)
            if text:
                filtered.append(AIMessage(content=text))
        else:
            filtered.append(message)
    return filtered


__all__ = [
    "stringify_content",
    "latest_user_text",
    "last_ai_message",
    "pending_tool_calls",
    "filter_stale_tool_messages",
]
