"""
src/taskpilot/streaming/legacy.py

The older single-document streaming representation: one mutable record per
stream, patched in place as text and tool executions arrive. Kept only so the
compatibility bridge can dual-write while clients move to the event log.
"""


import logging
import time
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from taskpilot.config import STREAM_RETENTION_HOURS, StreamStatus
from taskpilot.streaming.errors import LegacyStreamNotFoundError, StreamAlreadyStartedError


logger = logging.getLogger(__name__)


class LegacyToolExecution(BaseModel):

    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    status: Literal["running", "completed", "error"] = "running"


class LegacyStreamDocument(BaseModel):

    stream_id: str
    session_id: Optional[str] = None
    user_message: Optional[str] = None
    partial_content: str = ""
    tool_executions: List[LegacyToolExecution] = Field(default_factory=list)
    is_complete: bool = False
    status: StreamStatus = StreamStatus.STREAMING
    error: Optional[str] = None
    created_at: float
    updated_at: float


class LegacyStreamStore:
    """In-memory legacy documents keyed by stream id."""

    def __init__(self, clock: Callable[[], float] = time.time):

        self._clock = clock
        self._docs: Dict[str, LegacyStreamDocument] = {}

    def create(self, stream_id: str, user_message: str, session_id: Optional[str] = None) -> LegacyStreamDocument:

        if stream_id in self._docs:
            raise StreamAlreadyStartedError(stream_id)

        now = self._clock()
        doc = LegacyStreamDocument(
            stream_id=stream_id,
            session_id=session_id,
            user_message=user_message,
            created_at=now,
            updated_at=now,
        )
        self._docs[stream_id] = doc

        return doc

    def get(self, stream_id: str) -> Optional[LegacyStreamDocument]:

        return self._docs.get(stream_id)

    def stream_ids(self) -> List[str]:

        return list(self._docs)

    def append_text(self, stream_id: str, delta: str) -> LegacyStreamDocument:

        doc = self._require(stream_id)
        doc.partial_content += delta
        doc.updated_at = self._clock()

        return doc

    def record_tool_call(self, stream_id: str, tool_call_id: str, tool_name: str, input: Dict[str, Any]) -> LegacyStreamDocument:

        doc = self._require(stream_id)
        doc.tool_executions.append(LegacyToolExecution(tool_call_id=tool_call_id, tool_name=tool_name, input=dict(input)))
        doc.updated_at = self._clock()

        return doc

    def record_tool_result(self, stream_id: str, tool_call_id: str, tool_name: str, output: Any, success: bool = True) -> LegacyStreamDocument:
        """Patch the matching ledger entry; a result with no prior call gets its own entry."""

        doc = self._require(stream_id)
        status = "completed" if success else "error"
        entry = next((t for t in doc.tool_executions if t.tool_call_id == tool_call_id), None)

        if entry is None:
            entry = LegacyToolExecution(tool_call_id=tool_call_id, tool_name=tool_name)
            doc.tool_executions.append(entry)

        entry.output = output
        entry.status = status
        doc.updated_at = self._clock()

        return doc

    def complete(self, stream_id: str, final_content: Optional[str] = None) -> LegacyStreamDocument:

        doc = self._require(stream_id)

        if final_content is not None:
            doc.partial_content = final_content

        doc.is_complete = True
        doc.status = StreamStatus.COMPLETE
        doc.updated_at = self._clock()

        return doc

    def mark_error(self, stream_id: str, error: str) -> LegacyStreamDocument:

        doc = self._require(stream_id)
        doc.is_complete = True
        doc.status = StreamStatus.ERROR
        doc.error = error
        doc.updated_at = self._clock()

        return doc

    def delete(self, stream_id: str) -> None:

        self._docs.pop(stream_id, None)

    def cleanup_old(self, older_than_hours: float = STREAM_RETENTION_HOURS) -> int:

        cutoff = self._clock() - older_than_hours * 3600
        expired = [sid for sid, d in self._docs.items() if d.is_complete and d.updated_at < cutoff]

        for sid in expired:
            del self._docs[sid]

        return len(expired)

    def _require(self, stream_id: str) -> LegacyStreamDocument:

        doc = self._docs.get(stream_id)

        if doc is None:
            raise LegacyStreamNotFoundError(stream_id)

        return doc
# EOF
