"""
src/taskpilot/streaming/events.py

Event types and payload models for the append-only stream event log.
"""


import time
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):

    START = "stream-start"
    TEXT_DELTA = "text-delta"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    FINISH = "stream-finish"
    ERROR = "stream-error"


TERMINAL_EVENT_TYPES = frozenset({EventType.FINISH, EventType.ERROR})


# --- Payloads ------------------------------------------------------------------
class StreamStartPayload(BaseModel):

    user_message: str
    model_name: Optional[str] = None
    session_context: Optional[Dict[str, Any]] = None


class TextDeltaPayload(BaseModel):

    text: str
    accumulated: Optional[str] = None


class ToolCallPayload(BaseModel):

    tool_name: str
    tool_call_id: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultPayload(BaseModel):

    tool_name: str
    tool_call_id: str
    output: Any = None
    success: bool = True
    error: Optional[str] = None


class StreamFinishPayload(BaseModel):

    total_events: int
    final_content: str
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_results: Optional[List[Dict[str, Any]]] = None


class StreamErrorPayload(BaseModel):

    error: str
    error_type: Literal["auth", "ai", "tool", "system"] = "system"
    recoverable: bool = False


PAYLOAD_MODELS: Dict[EventType, Type[BaseModel]] = {
    EventType.START: StreamStartPayload,
    EventType.TEXT_DELTA: TextDeltaPayload,
    EventType.TOOL_CALL: ToolCallPayload,
    EventType.TOOL_RESULT: ToolResultPayload,
    EventType.FINISH: StreamFinishPayload,
    EventType.ERROR: StreamErrorPayload,
}


def validate_payload(event_type: EventType, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Check a payload against its event type's model; returns a plain dict."""

    model = PAYLOAD_MODELS[EventType(event_type)]

    return model.model_validate(payload).model_dump(exclude_none=True)


class StreamEvent(BaseModel):
    """One immutable entry in a stream. `order` is dense from 0 per stream."""

    model_config = ConfigDict(frozen=True)

    stream_id: str
    order: int = Field(ge=0)
    event_type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    user_message: Optional[str] = None
    created_at: float = Field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:

        return self.event_type in TERMINAL_EVENT_TYPES
# EOF
