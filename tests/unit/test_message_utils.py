"""Tests for message helpers."""

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from delegationAgent.utils.message_utils import (
    filter_stale_tool_messages,
    last_ai_message,
    latest_user_text,
    pending_tool_calls,
    stringify_content,
)
from fakes import ai_tool_calls, tool_call

CALLS = ai_tool_calls(
    tool_call("lookup", {"query": "a"}, "c1"),
    tool_call("search", {"query": "b"}, "c2"),
)


def test_stringify_content():
    assert stringify_content("plain") == "plain"
    assert stringify_content([{"type": "text", "text": "one"}, "two"]) == "one\ntwo"


def test_latest_user_text_and_last_ai():
    messages = [HumanMessage(content="first"), AIMessage(content="ok"), HumanMessage(content="second")]
    assert latest_user_text(messages) == "second"
    assert last_ai_message(messages).content == "ok"
    assert latest_user_text([]) == ""
    assert last_ai_message([HumanMessage(content="x")]) is None


class TestPendingToolCalls:
    def test_all_pending(self):
        assert [c["id"] for c in pending_tool_calls([HumanMessage(content="q"), CALLS])] == ["c1", "c2"]

    def test_completed_ids_are_skipped(self):
        assert [c["id"] for c in pending_tool_calls([CALLS], completed=["c1"])] == ["c2"]

    def test_answered_by_tool_message(self):
        messages = [CALLS, ToolMessage(content="rejected", tool_call_id="c1", status="error")]
        assert [c["id"] for c in pending_tool_calls(messages)] == ["c2"]

    def test_nothing_pending_after_answer(self):
        messages = [CALLS, ToolMessage(content="a", tool_call_id="c1"), ToolMessage(content="b", tool_call_id="c2")]
        assert pending_tool_calls(messages) == []

    def test_plain_ai_message_is_not_pending(self):
        assert pending_tool_calls([CALLS, AIMessage(content="final")]) == []


def test_filter_stale_tool_messages():
    messages = [
        HumanMessage(content="q"),
        ai_tool_calls(tool_call("lookup", {"query": "a"}, "c1"), content="Checking."),
        ToolMessage(content="x" * 600, tool_call_id="c1"),
        ai_tool_calls(tool_call("lookup", {"query": "b"}, "c2")),
        AIMessage(content="answer"),
    ]

    filtered = filter_stale_tool_messages(messages)

    assert [type(m) for m in filtered] == [HumanMessage, AIMessage, SystemMessage, AIMessage]
    assert filtered[1].content == "Checking." and not filtered[1].tool_calls
    assert filtered[2].content.startswith("[Tool result from previous session: ")
    assert len(filtered[2].content) < 600
