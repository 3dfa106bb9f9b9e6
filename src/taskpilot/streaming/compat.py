"""
src/taskpilot/streaming/compat.py - dual-write bridge (legacy document + event log)

Migration scaffolding: writes every streaming update to whichever backends
StreamingConfig turns on, reads from the event log first and the legacy
document second, and replays legacy documents into the event log. Delete this
module (and streaming.legacy) once no client reads the legacy document.

Write policy, per backend:
- legacy is active when use_legacy_system or hybrid_mode
- events are active when use_event_system or hybrid_mode
- a failed write is logged and the other backend still runs, unless the
  failing backend is the only active one, in which case the error propagates
"""


import logging
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from taskpilot.config import StreamStatus
from taskpilot.streaming.errors import LegacyStreamNotFoundError
from taskpilot.streaming.event_log import StreamEventLog
from taskpilot.streaming.events import EventType
from taskpilot.streaming.legacy import LegacyStreamStore, LegacyToolExecution
from taskpilot.streaming.reconstruction import StreamReconstructor


logger = logging.getLogger(__name__)


class StreamingConfig(BaseModel):

    model_config = ConfigDict(frozen=True)

    use_event_system: bool = True
    use_legacy_system: bool = True
    hybrid_mode: bool = True

    @property
    def legacy_active(self) -> bool:

        return self.use_legacy_system or self.hybrid_mode

    @property
    def events_active(self) -> bool:

        return self.use_event_system or self.hybrid_mode


class HybridWriteResult(BaseModel):
    """Per backend: None when inactive, True when written, False when the write failed."""

    stream_id: str
    legacy: Optional[bool] = None
    events: Optional[bool] = None


class StreamingData(BaseModel):

    source: Literal["events", "legacy"]
    stream_id: str
    partial_content: str
    is_complete: bool
    status: StreamStatus
    user_message: Optional[str] = None
    session_id: Optional[str] = None
    created_at: float
    updated_at: float
    tool_executions: List[LegacyToolExecution] = []
    total_events: Optional[int] = None
    last_event_order: Optional[int] = None


class MigrationResult(BaseModel):

    stream_id: str
    migrated: bool
    message: str
    events_created: int = 0
    legacy_preserved: bool = True


class MigrationStatus(BaseModel):

    total_legacy_streams: int
    total_event_streams: int
    migrated_streams: int
    unmigrated_streams: int
    event_only_streams: int
    migration_progress: float
    unmigrated_stream_ids: List[str]


class StreamingBridge:

    def __init__(self, event_log: StreamEventLog, legacy: LegacyStreamStore, config: Optional[StreamingConfig] = None):

        self.event_log = event_log
        self.legacy = legacy
        self.config = config or StreamingConfig()

    # --- Hybrid writes ---------------------------------------------------------
    def start_streaming_hybrid(
        self,
        stream_id: str,
        user_message: str,
        *,
        session_id: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "start",
            lambda: self.legacy.create(stream_id, user_message, session_id=session_id),
            lambda: self.event_log.start_stream(stream_id, user_message, session_id=session_id, model_name=model_name),
        )

    def update_streaming_text_hybrid(self, stream_id: str, text_delta: str, accumulated_text: Optional[str] = None) -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "text",
            lambda: self.legacy.append_text(stream_id, text_delta),
            lambda: self.event_log.publish_event(stream_id, EventType.TEXT_DELTA, {"text": text_delta, "accumulated": accumulated_text}),
        )

    def update_streaming_tool_call_hybrid(self, stream_id: str, tool_name: str, tool_call_id: str, input: Dict[str, Any]) -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "tool-call",
            lambda: self.legacy.record_tool_call(stream_id, tool_call_id, tool_name, input),
            lambda: self.event_log.publish_event(stream_id, EventType.TOOL_CALL, {
                "tool_name": tool_name,
                "tool_call_id": tool_call_id,
                "input": input,
            }),
        )

    def update_streaming_tool_result_hybrid(
        self,
        stream_id: str,
        tool_name: str,
        tool_call_id: str,
        output: Any,
        *,
        success: bool = True,
        error: Optional[str] = None,
    ) -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "tool-result",
            lambda: self.legacy.record_tool_result(stream_id, tool_call_id, tool_name, output, success=success),
            lambda: self.event_log.publish_event(stream_id, EventType.TOOL_RESULT, {
                "tool_name": tool_name,
                "tool_call_id": tool_call_id,
                "output": output,
                "success": success,
                "error": error,
            }),
        )

    def finish_streaming_hybrid(
        self,
        stream_id: str,
        final_content: str,
        *,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
        tool_results: Optional[List[Dict[str, Any]]] = None,
    ) -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "finish",
            lambda: self.legacy.complete(stream_id, final_content),
            lambda: self.event_log.finish_stream(stream_id, final_content, tool_calls=tool_calls, tool_results=tool_results),
        )

    def error_streaming_hybrid(self, stream_id: str, error: str, error_type: str = "system") -> HybridWriteResult:

        return self._dual_write(
            stream_id,
            "error",
            lambda: self.legacy.mark_error(stream_id, error),
            lambda: self.event_log.error_stream(stream_id, error, error_type=error_type),
        )

    # --- Reads -----------------------------------------------------------------
    def get_streaming_data_smart(self, stream_id: str, prefer_events: bool = True) -> Optional[StreamingData]:
        """Event-log view when one exists (and is preferred), else the legacy document."""

        if prefer_events:
            state = self.event_log.get_stream_state(stream_id)
            if state is not None:
                view = StreamReconstructor(stream_id)
                view.apply(self.event_log.get_stream_events(stream_id, limit=state.total_events))

                return StreamingData(
                    source="events",
                    stream_id=stream_id,
                    partial_content=self.event_log.reconstruct_stream_content(stream_id),
                    is_complete=state.is_complete,
                    status=state.status,
                    user_message=state.user_message,
                    session_id=state.session_id,
                    created_at=state.started_at,
                    updated_at=state.completed_at or state.started_at,
                    tool_executions=[
                        LegacyToolExecution(
                            tool_call_id=t.tool_call_id,
                            tool_name=t.tool_name,
                            input=t.input,
                            output=t.output,
                            status=t.status,
                        )
                        for t in view.tool_executions()
                    ],
                    total_events=state.total_events,
                    last_event_order=state.last_event_order,
                )

        doc = self.legacy.get(stream_id)

        if doc is None:
            return None

        return StreamingData(
            source="legacy",
            stream_id=stream_id,
            partial_content=doc.partial_content,
            is_complete=doc.is_complete,
            status=doc.status,
            user_message=doc.user_message,
            session_id=doc.session_id,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            tool_executions=[t.model_copy() for t in doc.tool_executions],
        )

    # --- Migration -------------------------------------------------------------
    def migrate_legacy_stream_to_events(self, stream_id: str, preserve_legacy: bool = True) -> MigrationResult:
        """
        Replay a legacy document's final state into the event log:
        start, one text-delta with the whole content, the tool ledger, then
        finish or error if the document is complete. Intermediate text
        granularity is lost; final content is preserved.
        """

        doc = self.legacy.get(stream_id)

        if doc is None:
            raise LegacyStreamNotFoundError(stream_id)

        if self.event_log.get_stream_state(stream_id) is not None:
            return MigrationResult(stream_id=stream_id, migrated=False, message="Events already exist for this stream")

        self.event_log.start_stream(stream_id, doc.user_message or "Migrated stream", session_id=doc.session_id)
        events = []

        if doc.partial_content:
            events.append((EventType.TEXT_DELTA, {"text": doc.partial_content, "accumulated": doc.partial_content}))

        for execution in doc.tool_executions:
            events.append((EventType.TOOL_CALL, {
                "tool_name": execution.tool_name or "unknown",
                "tool_call_id": execution.tool_call_id or "migrated",
                "input": execution.input,
            }))
            if execution.status != "running":
                events.append((EventType.TOOL_RESULT, {
                    "tool_name": execution.tool_name or "unknown",
                    "tool_call_id": execution.tool_call_id or "migrated",
                    "output": execution.output,
                    "success": execution.status == "completed",
                }))

        self.event_log.publish_event_batch(stream_id, events)
        created = 1 + len(events)

        if doc.status == StreamStatus.ERROR:
            self.event_log.error_stream(stream_id, doc.error or "Migrated error stream")
            created += 1
        elif doc.is_complete:
            self.event_log.finish_stream(stream_id, doc.partial_content)
            created += 1

        if not preserve_legacy:
            self.legacy.delete(stream_id)

        logger.info("Migrated legacy stream %s (%d events)", stream_id, created)

        return MigrationResult(
            stream_id=stream_id,
            migrated=True,
            message="Stream migrated to event system",
            events_created=created,
            legacy_preserved=preserve_legacy,
        )

    def get_migration_status(self) -> MigrationStatus:

        legacy_ids = self.legacy.stream_ids()
        event_ids = set(s for s in self._event_stream_ids())
        migrated = [sid for sid in legacy_ids if sid in event_ids]
        unmigrated = [sid for sid in legacy_ids if sid not in event_ids]

        return MigrationStatus(
            total_legacy_streams=len(legacy_ids),
            total_event_streams=len(event_ids),
            migrated_streams=len(migrated),
            unmigrated_streams=len(unmigrated),
            event_only_streams=len(event_ids - set(legacy_ids)),
            migration_progress=(len(migrated) / len(legacy_ids) * 100) if legacy_ids else 100.0,
            unmigrated_stream_ids=unmigrated[:10],
        )

    # --- Internal --------------------------------------------------------------
    def _event_stream_ids(self) -> List[str]:

        return [sid for sid in self.event_log.stream_ids() if self.event_log.get_stream_state(sid) is not None]

    def _dual_write(self, stream_id: str, op: str, legacy_write: Callable[[], Any], event_write: Callable[[], Any]) -> HybridWriteResult:

        cfg = self.config
        result = HybridWriteResult(stream_id=stream_id)

        if cfg.legacy_active:
            try:
                legacy_write()
                result.legacy = True
            except Exception as e:
                logger.warning("Legacy %s failed for stream %s: %s", op, stream_id, e)
                if not cfg.events_active:
                    raise
                result.legacy = False

        if cfg.events_active:
            try:
                event_write()
                result.events = True
            except Exception as e:
                logger.warning("Event %s failed for stream %s: %s", op, stream_id, e)
                if not cfg.legacy_active:
                    raise
                result.events = False

        return result
# EOF
