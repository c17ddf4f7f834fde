"""The ``delegate_task`` tool schema.

Delegations are intercepted by the tools node and run as child executions under a
delegation-layer budget; they never go through the tool dispatcher. Only the
schema is bound to the model.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, Field

DELEGATE_TOOL_NAME = "delegate_task"


class DelegateTaskArgs(BaseModel):
    """Hand a self-contained sub-task to a specialist agent and wait for its answer.

    The specialist cannot see this conversation. Describe the goal, the context it
    needs and the expected output format.
    """

    agent_id: str = Field(description="Id of the specialist agent to delegate to")
    task: str = Field(description="Self-contained task description")
    context: Optional[str] = Field(default=None, description="Extra facts the specialist needs")


def delegate_tool_schema() -> Dict[str, Any]:
    """OpenAI-style tool definition accepted by ``bind_tools``."""
    schema = convert_to_openai_tool(DelegateTaskArgs)
    schema["function"]["name"] = DELEGATE_TOOL_NAME
    return schema


def is_delegation(call: Mapping[str, Any]) -> bool:
    return call.get("name") == DELEGATE_TOOL_NAME


def parse_delegate_args(args: Mapping[str, Any]) -> DelegateTaskArgs:
    """Validate delegate_task arguments.

    Raises:
        pydantic.ValidationError: Missing or malformed arguments
    """
    return DelegateTaskArgs.model_validate(dict(args))
