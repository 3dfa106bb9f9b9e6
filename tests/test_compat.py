"""Tests for the legacy/event dual-write bridge, smart reads and migration."""

from unittest.mock import MagicMock

import pytest

from taskpilot.config import StreamStatus
from taskpilot.streaming.compat import StreamingBridge, StreamingConfig
from taskpilot.streaming.errors import LegacyStreamNotFoundError, StreamNotFoundError


def _run_stream(bridge, stream_id="s1"):
    bridge.start_streaming_hybrid(stream_id, "add milk to groceries", session_id="sess", model_name="gpt-4o-mini")
    bridge.update_streaming_tool_call_hybrid(stream_id, "createTask", "c1", {"content": "milk", "project_id": "p2"})
    bridge.update_streaming_tool_result_hybrid(stream_id, "createTask", "c1", {"id": "t9", "content": "milk"})
    bridge.update_streaming_text_hybrid(stream_id, "Added ", "Added ")
    bridge.update_streaming_text_hybrid(stream_id, "milk.", "Added milk.")
    bridge.finish_streaming_hybrid(stream_id, "Added milk.")


class TestConfig:

    def test_defaults_write_both(self):
        cfg = StreamingConfig()

        assert cfg.legacy_active and cfg.events_active

    def test_hybrid_mode_activates_both(self):
        cfg = StreamingConfig(use_event_system=False, use_legacy_system=False, hybrid_mode=True)

        assert cfg.legacy_active and cfg.events_active

    def test_events_only(self):
        cfg = StreamingConfig(use_event_system=True, use_legacy_system=False, hybrid_mode=False)

        assert cfg.events_active and not cfg.legacy_active


class TestDualWrites:

    def test_both_backends_record_the_stream(self, bridge, event_log, legacy):
        _run_stream(bridge)

        doc = legacy.get("s1")
        assert doc.partial_content == "Added milk."
        assert doc.is_complete and doc.status == StreamStatus.COMPLETE
        assert doc.tool_executions[0].status == "completed"

        assert event_log.reconstruct_stream_content("s1") == "Added milk."
        assert event_log.get_stream_state("s1").status == StreamStatus.COMPLETE

    def test_write_result_reports_each_backend(self, bridge):
        result = bridge.start_streaming_hybrid("s1", "hi")

        assert (result.legacy, result.events) == (True, True)

    def test_inactive_backend_is_untouched(self, event_log, legacy):
        bridge = StreamingBridge(event_log, legacy, StreamingConfig(use_legacy_system=False, hybrid_mode=False))

        result = bridge.start_streaming_hybrid("s1", "hi")

        assert result.legacy is None
        assert legacy.get("s1") is None
        assert event_log.has_stream("s1")

    def test_failure_in_one_backend_does_not_block_the_other(self, event_log, legacy):
        bridge = StreamingBridge(event_log, legacy)
        legacy.create("s1", "pre-existing")

        result = bridge.start_streaming_hybrid("s1", "hi")

        assert result.legacy is False
        assert result.events is True
        assert event_log.has_stream("s1")

    def test_failure_in_only_active_backend_propagates(self, event_log, legacy):
        bridge = StreamingBridge(event_log, legacy, StreamingConfig(use_legacy_system=False, hybrid_mode=False))

        with pytest.raises(StreamNotFoundError):
            bridge.update_streaming_text_hybrid("never-started", "x")

    def test_error_reaches_both(self, bridge, event_log, legacy):
        bridge.start_streaming_hybrid("s1", "hi")

        bridge.error_streaming_hybrid("s1", "maximum iterations reached", error_type="ai")

        assert legacy.get("s1").status == StreamStatus.ERROR
        assert legacy.get("s1").error == "maximum iterations reached"
        assert event_log.get_stream_state("s1").status == StreamStatus.ERROR


class TestSmartRead:

    def test_prefers_events(self, bridge):
        _run_stream(bridge)

        data = bridge.get_streaming_data_smart("s1")

        assert data.source == "events"
        assert data.partial_content == "Added milk."
        assert data.is_complete
        assert data.total_events == 6
        assert data.tool_executions[0].tool_name == "createTask"
        assert data.tool_executions[0].status == "completed"

    def test_falls_back_to_legacy(self, event_log, legacy):
        bridge = StreamingBridge(event_log, legacy, StreamingConfig(use_event_system=False, hybrid_mode=False))
        _run_stream(bridge)

        data = bridge.get_streaming_data_smart("s1")

        assert data.source == "legacy"
        assert data.partial_content == "Added milk."
        assert data.total_events is None

    def test_prefer_legacy(self, bridge):
        _run_stream(bridge)

        assert bridge.get_streaming_data_smart("s1", prefer_events=False).source == "legacy"

    def test_both_views_agree(self, bridge):
        _run_stream(bridge)

        events = bridge.get_streaming_data_smart("s1")
        legacy = bridge.get_streaming_data_smart("s1", prefer_events=False)

        assert events.partial_content == legacy.partial_content
        assert events.status == legacy.status
        assert events.is_complete == legacy.is_complete
        assert [t.model_dump() for t in events.tool_executions] == [t.model_dump() for t in legacy.tool_executions]

    def test_unknown_stream(self, bridge):
        assert bridge.get_streaming_data_smart("missing") is None


class TestMigration:

    def _legacy_only(self, event_log, legacy):
        return StreamingBridge(event_log, legacy, StreamingConfig(use_event_system=False, hybrid_mode=False))

    def test_completed_document_is_replayed(self, event_log, legacy):
        _run_stream(self._legacy_only(event_log, legacy))
        bridge = StreamingBridge(event_log, legacy)

        result = bridge.migrate_legacy_stream_to_events("s1")

        assert result.migrated is True
        assert result.events_created == 5
        assert result.legacy_preserved is True
        assert event_log.reconstruct_stream_content("s1") == "Added milk."
        assert event_log.get_stream_state("s1").status == StreamStatus.COMPLETE
        assert [e.order for e in event_log.get_stream_events("s1")] == [0, 1, 2, 3, 4]
        assert legacy.get("s1") is not None

    def test_running_tool_has_no_result(self, event_log, legacy):
        legacy.create("s1", "hi")
        legacy.record_tool_call("s1", "c1", "getTasks", {})

        StreamingBridge(event_log, legacy).migrate_legacy_stream_to_events("s1")

        types = [e.event_type.value for e in event_log.get_stream_events("s1")]
        assert types == ["stream-start", "tool-call"]
        assert event_log.get_stream_state("s1").status == StreamStatus.STREAMING

    def test_error_document_ends_with_error(self, event_log, legacy):
        legacy.create("s1", "hi")
        legacy.record_tool_call("s1", "c1", "getTasks", {})
        legacy.record_tool_result("s1", "c1", "getTasks", "The task service is having problems", success=False)
        legacy.mark_error("s1", "tool failed")

        StreamingBridge(event_log, legacy).migrate_legacy_stream_to_events("s1")

        result_event = event_log.get_stream_events("s1")[2]
        assert result_event.payload["success"] is False
        assert event_log.get_stream_state("s1").status == StreamStatus.ERROR
        assert event_log.get_stream_summary("s1").error == "tool failed"

    def test_existing_events_are_not_duplicated(self, bridge, event_log):
        _run_stream(bridge)

        result = bridge.migrate_legacy_stream_to_events("s1")

        assert result.migrated is False
        assert len(event_log.get_stream_events("s1")) == 6

    def test_missing_document(self, bridge):
        with pytest.raises(LegacyStreamNotFoundError):
            bridge.migrate_legacy_stream_to_events("missing")

    def test_drop_legacy_after_migration(self, event_log, legacy):
        legacy.create("s1", "hi")
        legacy.complete("s1", "done")

        result = StreamingBridge(event_log, legacy).migrate_legacy_stream_to_events("s1", preserve_legacy=False)

        assert result.legacy_preserved is False
        assert legacy.get("s1") is None

    def test_migration_status(self, event_log, legacy):
        old = self._legacy_only(event_log, legacy)
        for sid in ("a", "b", "c", "d"):
            _run_stream(old, sid)
        bridge = StreamingBridge(event_log, legacy)
        bridge.migrate_legacy_stream_to_events("a")
        event_log.start_stream("fresh", "events only")

        status = bridge.get_migration_status()

        assert status.total_legacy_streams == 4
        assert status.total_event_streams == 2
        assert status.migrated_streams == 1
        assert status.unmigrated_streams == 3
        assert status.event_only_streams == 1
        assert status.migration_progress == 25.0
        assert status.unmigrated_stream_ids == ["b", "c", "d"]

    def test_status_with_no_legacy_streams(self, bridge):
        assert bridge.get_migration_status().migration_progress == 100.0


class TestLegacyStore:

    def test_result_without_call_gets_own_entry(self, legacy):
        legacy.create("s1", "hi")

        doc = legacy.record_tool_result("s1", "c9", "getTasks", {"count": 0}, success=False)

        assert doc.tool_executions[0].tool_call_id == "c9"
        assert doc.tool_executions[0].status == "error"

    def test_cleanup_old_completed_documents(self, legacy, clock):
        legacy.create("done", "a")
        legacy.complete("done", "ok")
        legacy.create("open", "b")
        clock.advance(25 * 3600)

        assert legacy.cleanup_old(older_than_hours=24) == 1
        assert legacy.stream_ids() == ["open"]

    def test_unknown_document(self, legacy):
        with pytest.raises(LegacyStreamNotFoundError):
            legacy.append_text("missing", "x")


class TestBackendFailureIsolation:

    def test_event_log_outage_keeps_legacy_document(self, legacy):
        broken = MagicMock()
        broken.start_stream.side_effect = RuntimeError("event store down")
        bridge = StreamingBridge(broken, legacy)

        result = bridge.start_streaming_hybrid("s1", "hi")

        assert result.events is False
        assert legacy.get("s1") is not None
