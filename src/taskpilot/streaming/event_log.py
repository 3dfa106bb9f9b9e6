"""
src/taskpilot/streaming/event_log.py - append-only stream event log

One list of StreamEvents per stream id, in order. Order assignment reads the
current max and inserts at max+1, so a stream must have a single writer (one
orchestration run owns one stream).

Everything the client sees is derived from the log:
- get_stream_state(): status / completion from the start + terminal events
- reconstruct_stream_content(): text-deltas concatenated in order
- get_stream_events() / get_incremental_events(): tail reads by order

The log never checks terminal exclusivity. Callers publish exactly one of
stream-finish / stream-error.
"""


import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from taskpilot.config import STREAM_PAGE_SIZE, STREAM_RETENTION_HOURS, StreamStatus
from taskpilot.streaming.errors import StreamAlreadyStartedError, StreamNotFoundError
from taskpilot.streaming.events import EventType, StreamEvent, validate_payload


logger = logging.getLogger(__name__)


class StreamState(BaseModel):

    stream_id: str
    session_id: Optional[str] = None
    user_message: Optional[str] = None
    status: StreamStatus
    is_complete: bool
    total_events: int
    started_at: float
    completed_at: Optional[float] = None
    last_event_order: int


class StreamSummary(BaseModel):

    stream_id: str
    status: StreamStatus
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration: Optional[float] = None
    user_message: Optional[str] = None
    session_id: Optional[str] = None
    total_events: int = 0
    text_events: int = 0
    tools_executed: int = 0
    tools_completed: int = 0
    tool_names: List[str] = []
    error: Optional[str] = None


class StreamEventLog:
    """In-memory event store. Inject one instance per process (or per test)."""

    def __init__(self, clock: Callable[[], float] = time.time):

        self._clock = clock
        self._streams: Dict[str, List[StreamEvent]] = {}

    # --- Writes ----------------------------------------------------------------
    def start_stream(
        self,
        stream_id: str,
        user_message: str,
        *,
        session_id: Optional[str] = None,
        model_name: Optional[str] = None,
        session_context: Optional[Dict[str, Any]] = None,
    ) -> StreamEvent:
        """Insert the order-0 stream-start event. A second start is an error."""

        if self._streams.get(stream_id):
            raise StreamAlreadyStartedError(stream_id)

        payload = validate_payload(EventType.START, {
            "user_message": user_message,
            "model_name": model_name,
            "session_context": session_context,
        })
        event = StreamEvent(
            stream_id=stream_id,
            order=0,
            event_type=EventType.START,
            payload=payload,
            session_id=session_id,
            user_message=user_message,
            created_at=self._clock(),
        )
        self._streams[stream_id] = [event]
        logger.debug("Started stream %s", stream_id)

        return event

    def publish_event(self, stream_id: str, event_type: EventType, payload: Dict[str, Any]) -> StreamEvent:

        return self.publish_event_batch(stream_id, [(event_type, payload)])[0]

    def publish_event_batch(self, stream_id: str, events: Iterable[Tuple[EventType, Dict[str, Any]]]) -> List[StreamEvent]:
        """
        Append events with a contiguous block of orders, preserving their
        relative order. Every payload is validated before anything is appended.
        """

        log = self._require_stream(stream_id)
        start = log[0]
        next_order = log[-1].order + 1
        created_at = self._clock()
        batch = []

        for offset, (event_type, payload) in enumerate(events):
            event_type = EventType(event_type)
            batch.append(StreamEvent(
                stream_id=stream_id,
                order=next_order + offset,
                event_type=event_type,
                payload=validate_payload(event_type, payload),
                session_id=start.session_id,
                user_message=start.user_message,
                created_at=created_at,
            ))

        log.extend(batch)

        return batch

    def finish_stream(
        self,
        stream_id: str,
        final_content: str,
        *,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        tool_results: Optional[List[Dict[str, Any]]] = None,
    ) -> StreamEvent:

        total = len(self._require_stream(stream_id))

        return self.publish_event(stream_id, EventType.FINISH, {
            "total_events": total,
            "final_content": final_content,
            "tool_calls": tool_calls,
            "tool_results": tool_results,
        })

    def error_stream(self, stream_id: str, error: str, *, error_type: str = "system", recoverable: bool = False) -> StreamEvent:

        return self.publish_event(stream_id, EventType.ERROR, {
            "error": error,
            "error_type": error_type,
            "recoverable": recoverable,
        })

    def cleanup_old_streams(self, older_than_hours: float = STREAM_RETENTION_HOURS) -> Dict[str, int]:
        """Drop every event of streams whose terminal event is past the horizon."""

        cutoff = self._clock() - older_than_hours * 3600
        expired = [
            stream_id for stream_id, log in self._streams.items()
            if any(e.is_terminal and e.created_at < cutoff for e in log)
        ]
        deleted_events = 0

        for stream_id in expired:
            deleted_events += len(self._streams.pop(stream_id))

        if expired:
            logger.info("Cleaned up %d streams (%d events)", len(expired), deleted_events)

        return {"deleted_streams": len(expired), "deleted_events": deleted_events}

    # --- Reads -----------------------------------------------------------------
    def has_stream(self, stream_id: str) -> bool:

        return bool(self._streams.get(stream_id))

    def stream_ids(self) -> List[str]:

        return list(self._streams)

    def get_stream_events(self, stream_id: str, from_order: Optional[int] = None, limit: int = STREAM_PAGE_SIZE) -> List[StreamEvent]:
        """Events in ascending order, from `from_order` inclusive."""

        log = self._streams.get(stream_id, [])
        lo = from_order or 0

        return [e for e in log if e.order >= lo][:limit]

    def get_incremental_events(self, stream_id: str, since_order: int) -> List[StreamEvent]:
        """Everything strictly after `since_order`; the client polling read."""

        return [e for e in self._streams.get(stream_id, []) if e.order > since_order]

    def get_events_by_type(self, stream_id: str, event_types: Iterable[EventType], limit: Optional[int] = None) -> List[StreamEvent]:

        wanted = {EventType(t) for t in event_types}
        out = [e for e in self._streams.get(stream_id, []) if e.event_type in wanted]

        return out[:limit] if limit is not None else out

    def get_stream_state(self, stream_id: str) -> Optional[StreamState]:
        """Derived status, or None when the stream has no start event."""

        log = self._streams.get(stream_id)

        if not log or log[0].event_type != EventType.START:
            return None

        start = log[0]
        terminal = next((e for e in log if e.is_terminal), None)

        if terminal is None:
            status = StreamStatus.STREAMING
        elif terminal.event_type == EventType.ERROR:
            status = StreamStatus.ERROR
        else:
            status = StreamStatus.COMPLETE

        return StreamState(
            stream_id=stream_id,
            session_id=start.session_id,
            user_message=start.user_message,
            status=status,
            is_complete=terminal is not None,
            total_events=len(log),
            started_at=start.created_at,
            completed_at=terminal.created_at if terminal else None,
            last_event_order=log[-1].order,
        )

    def reconstruct_stream_content(self, stream_id: str) -> str:

        return "".join(
            e.payload.get("text", "")
            for e in self._streams.get(stream_id, [])
            if e.event_type == EventType.TEXT_DELTA
        )

    def get_active_streams(self, session_id: Optional[str] = None) -> List[StreamState]:
        """Started streams with no terminal event, optionally for one session."""

        out = []

        for stream_id in self._streams:
            state = self.get_stream_state(stream_id)
            if state is None or state.is_complete:
                continue
            if session_id is not None and state.session_id != session_id:
                continue
            out.append(state)

        return out

    def get_stream_summary(self, stream_id: str) -> Optional[StreamSummary]:

        log = self._streams.get(stream_id)

        if not log:
            return None

        start = next((e for e in log if e.event_type == EventType.START), None)
        finish = next((e for e in log if e.event_type == EventType.FINISH), None)
        error = next((e for e in log if e.event_type == EventType.ERROR), None)
        calls = [e for e in log if e.event_type == EventType.TOOL_CALL]
        ended = finish or error

        if error:
            status = StreamStatus.ERROR
        elif finish:
            status = StreamStatus.COMPLETE
        else:
            status = StreamStatus.STREAMING

        tool_names: List[str] = []
        for e in calls:
            if e.payload["tool_name"] not in tool_names:
                tool_names.append(e.payload["tool_name"])

        return StreamSummary(
            stream_id=stream_id,
            status=status,
            started_at=start.created_at if start else None,
            completed_at=ended.created_at if ended else None,
            duration=(ended.created_at - start.created_at) if (start and ended) else None,
            user_message=start.user_message if start else None,
            session_id=start.session_id if start else None,
            total_events=len(log),
            text_events=sum(1 for e in log if e.event_type == EventType.TEXT_DELTA),
            tools_executed=len(calls),
            tools_completed=sum(1 for e in log if e.event_type == EventType.TOOL_RESULT),
            tool_names=tool_names,
            error=error.payload.get("error") if error else None,
        )

    # --- Internal --------------------------------------------------------------
    def _require_stream(self, stream_id: str) -> List[StreamEvent]:

        log = self._streams.get(stream_id)

        if not log:
            raise StreamNotFoundError(stream_id)

        return log
# EOF
