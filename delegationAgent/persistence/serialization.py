"""Execution state (de)serialization for checkpoints."""

from __future__ import annotations

import json
from typing import Any, Dict

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict

STATE_FORMAT_VERSION = 1


def serialize_state(state: Dict[str, Any]) -> str:
    """Serialize execution state to a JSON string.

    LangChain messages are stored with ``messages_to_dict``; every other value
    must already be JSON-compatible.

    Raises:
        TypeError, ValueError: The state contains non-serializable values
    """
    payload: Dict[str, Any] = {"__version__": STATE_FORMAT_VERSION}
    for key, value in state.items():
        if key == "messages":
            payload[key] = messages_to_dict(list(value or []))
        elif isinstance(value, BaseMessage):
            payload[key] = {"__message__": messages_to_dict([value])[0]}
        else:
            payload[key] = value
    return json.dumps(payload, ensure_ascii=False, allow_nan=False)


def deserialize_state(state_blob: str) -> Dict[str, Any]:
    """Inverse of ``serialize_state``."""
    data = json.loads(state_blob)
    data.pop("__version__", None)
    state: Dict[str, Any] = {}
    for key, value in data.items():
        if key == "messages":
            state[key] = messages_from_dict(value or [])
        elif isinstance(value, dict) and "__message__" in value:
            state[key] = messages_from_dict([value["__message__"]])[0]
        else:
            state[key] = value
    return state
