"""
src/taskpilot/orchestrator/models.py

Pydantic models for tool-calling I/O, model responses and chat results.
"""


import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolErrorKind(str, Enum):

    CIRCUIT_OPEN = "circuit_open"
    INVALID_INPUT = "invalid_input"
    UNKNOWN_TOOL = "unknown_tool"
    NOT_CONNECTED = "not_connected"
    AUTH_EXPIRED = "auth_expired"
    RATE_LIMITED = "rate_limited"
    UPSTREAM = "upstream"
    FAILED = "failed"


class ToolInvocation(BaseModel):

    model_config = ConfigDict(frozen=True)

    tool_name: str
    tool_call_id: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolError(BaseModel):

    kind: ToolErrorKind
    message: str


class ToolResult(BaseModel):
    """
    Result envelope for one invocation.

    On success `output` holds the tool's declared output. On failure `output`
    is a user-safe sentence and `error` says what went wrong.
    """

    tool_call_id: str
    tool_name: str
    success: bool
    output: Any = None
    error: Optional[ToolError] = None

    @classmethod
    def ok(cls, invocation: ToolInvocation, output: Any) -> "ToolResult":

        return cls(
            tool_call_id=invocation.tool_call_id,
            tool_name=invocation.tool_name,
            success=True,
            output=output,
        )

    @classmethod
    def failed(cls, invocation: ToolInvocation, kind: ToolErrorKind, user_message: str, detail: str = "") -> "ToolResult":

        return cls(
            tool_call_id=invocation.tool_call_id,
            tool_name=invocation.tool_name,
            success=False,
            output=user_message,
            error=ToolError(kind=kind, message=detail or user_message),
        )


class ModelResponse(BaseModel):
    """What the model collaborator returns for one completion."""

    text: str = ""
    tool_calls: List[ToolInvocation] = Field(default_factory=list)


class ModelFlags(BaseModel):

    use_fast_model: bool = False
    model: Optional[str] = None


class ChatResponse(BaseModel):

    response: str
    stream_id: Optional[str] = None
    steps: int = 0
    tool_calls: int = 0
    tool_results: int = 0


# --- Conversation turn builders -----------------------------------------------
def user_turn(content: str) -> Dict[str, Any]:

    return {"role": "user", "content": content, "timestamp": _now_ms()}


def assistant_turn(content: str, calls: Optional[List[ToolInvocation]] = None) -> Dict[str, Any]:
    """Assistant text and/or tool calls, in the persisted history shape."""

    turn: Dict[str, Any] = {"role": "assistant", "content": content or "", "timestamp": _now_ms()}

    if calls:
        turn["tool_calls"] = [
            {"name": c.tool_name, "args": dict(c.input), "tool_call_id": c.tool_call_id}
            for c in calls
        ]

    return turn


def tool_turn(results: List[ToolResult]) -> Dict[str, Any]:

    return {
        "role": "tool",
        "tool_results": [
            {
                "tool_call_id": r.tool_call_id,
                "tool_name": r.tool_name,
                "output": r.output,
                "success": r.success,
            }
            for r in results
        ],
        "timestamp": _now_ms(),
    }


def _now_ms() -> int:

    return int(time.time() * 1000)
# EOF
