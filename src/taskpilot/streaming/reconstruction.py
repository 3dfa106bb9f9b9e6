"""
src/taskpilot/streaming/reconstruction.py - incremental stream rebuild

StreamReconstructor folds events into a view a client can render. It is fed
whatever a poll returned (a full read or an incremental tail):
- events at or below `last_order` were already applied and are ignored
- events past a gap wait in a buffer until the missing orders arrive
"""


import logging
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field

from taskpilot.config import StreamStatus
from taskpilot.streaming.events import EventType, StreamEvent


logger = logging.getLogger(__name__)


class ToolState(BaseModel):

    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: Optional[str] = None
    status: Literal["running", "completed", "error"] = "running"
    started_at: Optional[float] = None
    ended_at: Optional[float] = None


class StreamReconstructor:

    def __init__(self, stream_id: Optional[str] = None):

        self.stream_id = stream_id
        self.content = ""
        self.status = StreamStatus.STREAMING
        self.started = False
        self.user_message: Optional[str] = None
        self.session_id: Optional[str] = None
        self.model_name: Optional[str] = None
        self.error: Optional[str] = None
        self.final_content: Optional[str] = None
        self.tool_states: Dict[str, ToolState] = {}
        self.last_order = -1
        self._pending: Dict[int, StreamEvent] = {}

    @property
    def is_complete(self) -> bool:

        return self.status != StreamStatus.STREAMING

    @property
    def has_gap(self) -> bool:
        """True while buffered events are waiting for an earlier order."""

        return bool(self._pending)

    def apply(self, events: Iterable[StreamEvent]) -> List[StreamEvent]:
        """Apply a batch; returns the events that actually changed the view."""

        for event in events:
            if self.stream_id is None:
                self.stream_id = event.stream_id
            elif event.stream_id != self.stream_id:
                logger.warning("Ignoring event for stream %s in reconstructor for %s", event.stream_id, self.stream_id)
                continue
            if event.order <= self.last_order or event.order in self._pending:
                continue
            self._pending[event.order] = event

        applied = []

        while self.last_order + 1 in self._pending:
            event = self._pending.pop(self.last_order + 1)
            self._apply_one(event)
            self.last_order = event.order
            applied.append(event)

        return applied

    def tool_executions(self) -> List[ToolState]:
        """Tool states in call order."""

        return list(self.tool_states.values())

    # --- Internal --------------------------------------------------------------
    def _apply_one(self, event: StreamEvent) -> None:

        payload = event.payload
        kind = event.event_type

        if kind == EventType.START:
            self.started = True
            self.user_message = payload.get("user_message") or event.user_message
            self.session_id = event.session_id
            self.model_name = payload.get("model_name")

        elif kind == EventType.TEXT_DELTA:
            self.content += payload.get("text", "")

        elif kind == EventType.TOOL_CALL:
            self.tool_states[payload["tool_call_id"]] = ToolState(
                tool_call_id=payload["tool_call_id"],
                tool_name=payload["tool_name"],
                input=payload.get("input", {}),
                started_at=event.created_at,
            )

        elif kind == EventType.TOOL_RESULT:
            state = self.tool_states.get(payload["tool_call_id"])
            if state is None:
                # result without a visible call (e.g. a migrated stream)
                state = ToolState(tool_call_id=payload["tool_call_id"], tool_name=payload["tool_name"])
                self.tool_states[state.tool_call_id] = state
            state.status = "completed" if payload.get("success", True) else "error"
            state.output = payload.get("output")
            state.error = payload.get("error")
            state.ended_at = event.created_at

        elif kind == EventType.FINISH:
            self.status = StreamStatus.COMPLETE
            self.final_content = payload.get("final_content")

        elif kind == EventType.ERROR:
            self.status = StreamStatus.ERROR
            self.error = payload.get("error")
# EOF
