"""Tests for ToolExecutor: validation, dispatch, failure templates, breaker wiring."""

from unittest.mock import AsyncMock

import pytest

from conftest import call
from taskpilot.orchestrator.errors import ProviderError
from taskpilot.orchestrator.models import ToolErrorKind
from taskpilot.tools.circuit_breaker import CIRCUIT_OPEN_TEMPLATE
from taskpilot.tools.executor import (
    AUTH_EXPIRED_TEMPLATE,
    NOT_CONNECTED_TEMPLATE,
    RATE_LIMITED_TEMPLATE,
    UPSTREAM_TEMPLATE,
    ToolExecutor,
    classify_failure,
)


class TestClassifyFailure:

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (ProviderError("Task provider not connected"), ToolErrorKind.NOT_CONNECTED),
            (ProviderError("token expired"), ToolErrorKind.AUTH_EXPIRED),
            (ProviderError("nope", status=401), ToolErrorKind.AUTH_EXPIRED),
            (ProviderError("Rate limit exceeded"), ToolErrorKind.RATE_LIMITED),
            (ProviderError("HTTP 429 returned"), ToolErrorKind.RATE_LIMITED),
            (ProviderError("Internal Server Error"), ToolErrorKind.UPSTREAM),
            (ProviderError("bad gateway", status=502), ToolErrorKind.UPSTREAM),
            (ProviderError("service unavailable"), ToolErrorKind.UPSTREAM),
            (ProviderError("Task not found: t500", status=404), ToolErrorKind.FAILED),
        ],
    )
    def test_known_substrings(self, exc, kind):
        assert classify_failure("createTask", "task service", exc)[0] == kind

    def test_templates_are_fixed(self):
        assert classify_failure("x", "task service", ProviderError("not connected"))[1] == NOT_CONNECTED_TEMPLATE.format(service="task service")
        assert classify_failure("x", "task service", ProviderError("unauthorized"))[1] == AUTH_EXPIRED_TEMPLATE.format(service="task service")
        assert classify_failure("x", "task service", ProviderError("too many requests"))[1] == RATE_LIMITED_TEMPLATE.format(service="task service")
        assert classify_failure("x", "task service", ProviderError("503"))[1] == UPSTREAM_TEMPLATE.format(service="task service")

    def test_generic_message_is_truncated(self):
        kind, message = classify_failure("createTask", "task service", RuntimeError("x" * 500))

        assert kind == ToolErrorKind.FAILED
        assert message.startswith("Sorry, I couldn't complete createTask: ")
        assert message.endswith("...")
        assert len(message) < 300


class TestExecuteSuccess:

    @pytest.mark.asyncio
    async def test_create_task_output_shape(self, executor, workspace):
        result = await executor.execute(call("createTask", "c1", content="call the dentist", due_string="tomorrow at 2pm"))

        assert result.success is True
        assert result.tool_call_id == "c1"
        assert result.output["content"] == "call the dentist"
        assert result.output["due_string"] == "tomorrow at 2pm"
        assert "created_at" not in result.output
        assert any(t["content"] == "call the dentist" for t in workspace.tasks)

    @pytest.mark.asyncio
    async def test_get_tasks_filters_project(self, executor):
        result = await executor.execute(call("getTasks", "c1", project_id="p2"))

        assert result.output["count"] == 2
        assert {t["id"] for t in result.output["tasks"]} == {"t1", "t2"}

    @pytest.mark.asyncio
    async def test_find_project_returns_ids(self, executor):
        result = await executor.execute(call("findProject", "c1", query="grocery"))

        assert result.output["matches"][0]["id"] == "p2"

    @pytest.mark.asyncio
    async def test_update_and_complete_task(self, executor, workspace):
        await executor.execute(call("updateTask", "c1", task_id="t1", priority=4))
        result = await executor.execute(call("completeTask", "c2", task_id="t1"))

        assert result.output["priority"] == 4
        assert result.output["is_completed"] is True

    @pytest.mark.asyncio
    async def test_calendar_round_trip(self, executor):
        created = await executor.execute(call("createCalendarEvent", "c1", summary="Dentist", start="tomorrow 2pm"))
        listed = await executor.execute(call("listCalendarEvents", "c2"))

        assert created.output["start"] == "tomorrow 2pm"
        assert created.output["id"] in {e["id"] for e in listed.output["events"]}

    @pytest.mark.asyncio
    async def test_get_current_time_uses_clock(self, task_store, calendar, breakers):
        clock = lambda tz=None: {"iso": "2026-10-17T09:00:00+00:00", "time_zone": tz or "UTC"}
        executor = ToolExecutor(task_store, calendar, breakers, clock=clock)

        result = await executor.execute(call("getCurrentTime", "c1", time_zone="Europe/London"))

        assert result.output == {"iso": "2026-10-17T09:00:00+00:00", "time_zone": "Europe/London"}


class TestBatchTools:

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_going(self, executor, workspace):
        result = await executor.execute(call("completeBatchTasks", "c1", task_ids=["t1", "t99", "t3"]))

        assert result.success is True
        assert [t["id"] for t in result.output["successful"]] == ["t1", "t3"]
        assert result.output["failed"] == [{"index": 1, "item": "t99", "error": "Task not found: t99"}]
        assert result.output["summary"] == "Batch task completion finished: 2 successful, 1 failed"
        assert all(t["is_completed"] for t in workspace.tasks if t["id"] in ("t1", "t3"))

    @pytest.mark.asyncio
    async def test_name_in_batch_fails_only_that_item(self, executor, task_store, workspace):
        result = await executor.execute(call("deleteBatchTasks", "c1", task_ids=["t3", "Buy milk"]))

        assert result.success is True
        assert result.output["successful"][0]["deleted"] is True
        assert result.output["failed"][0]["item"] == "Buy milk"
        assert "Use getTasks" in result.output["failed"][0]["error"]
        assert task_store.calls == 1
        assert "t3" not in {t["id"] for t in workspace.tasks}

    @pytest.mark.asyncio
    async def test_create_batch_with_unknown_project(self, executor, workspace):
        result = await executor.execute(call(
            "createBatchTasks", "c1",
            tasks=[{"content": "Bread", "project_id": "p2"}, {"content": "Nails", "project_id": "p404"}],
        ))

        assert result.output["successful"][0]["id"] == "t5"
        assert result.output["successful"][0]["project_id"] == "p2"
        assert result.output["failed"][0]["item"] == "Nails"
        assert "p404" in result.output["failed"][0]["error"]
        assert [t["content"] for t in workspace.tasks].count("Nails") == 0

    @pytest.mark.asyncio
    async def test_update_batch(self, executor, workspace):
        result = await executor.execute(call(
            "updateBatchTasks", "c1",
            updates=[{"task_id": "t1", "priority": 3}, {"task_id": "t4", "is_completed": False}],
        ))

        assert result.output["summary"].endswith("2 successful, 0 failed")
        by_id = {t["id"]: t for t in workspace.tasks}
        assert by_id["t1"]["priority"] == 3
        assert by_id["t4"]["is_completed"] is False

    @pytest.mark.asyncio
    async def test_reorganize_moves_and_shifts_due_dates(self, task_store, calendar, breakers, workspace):
        executor = ToolExecutor(task_store, calendar, breakers, clock=lambda tz=None: {"date": "2026-10-20"})

        result = await executor.execute(call(
            "reorganizeTasksBatch", "c1",
            task_ids=["t1", "t2"], modifications={"project_id": "p3", "add_days": 2},
        ))

        assert "project_id=p3" in result.output["summary"]
        by_id = {t["id"]: t for t in workspace.tasks}
        assert by_id["t1"]["due_date"] == "2026-10-22"
        assert by_id["t2"]["due_date"] == "2026-10-19"
        assert by_id["t1"]["project_id"] == by_id["t2"]["project_id"] == "p3"

    @pytest.mark.asyncio
    async def test_reorganize_rejects_project_name(self, executor, task_store):
        result = await executor.execute(call(
            "reorganizeTasksBatch", "c1",
            task_ids=["t1"], modifications={"project_id": "Home Renovation"},
        ))

        assert result.error.kind == ToolErrorKind.INVALID_INPUT
        assert "findProject" in result.output
        assert task_store.calls == 0

    @pytest.mark.asyncio
    async def test_disconnected_provider_fails_whole_batch(self, executor, workspace):
        workspace.connections["tasks"] = False

        result = await executor.execute(call("completeBatchTasks", "c1", task_ids=["t1", "t2"]))

        assert result.success is False
        assert result.error.kind == ToolErrorKind.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_create_project_with_tasks(self, executor, workspace):
        result = await executor.execute(call(
            "createProjectWithTasks", "c1",
            name="Garden", tasks=[{"content": "Mow the lawn"}, {"content": "   "}],
        ))

        assert result.output["project_id"] == "p4"
        assert result.output["project_name"] == "Garden"
        assert result.output["successful"][0]["project_id"] == "p4"
        assert result.output["failed"][0]["index"] == 1
        assert result.output["summary"] == "Project 'Garden' created with tasks: 1 successful, 1 failed"

    @pytest.mark.asyncio
    async def test_get_project_details(self, executor):
        result = await executor.execute(call("getProjectDetails", "c1", project_id="p3"))

        assert result.output["name"] == "Home Renovation"
        assert [t["id"] for t in result.output["tasks"]] == ["t3", "t4"]
        assert result.output["completed_count"] == 1
        assert all("created_at" not in t for t in result.output["tasks"])

    @pytest.mark.asyncio
    async def test_search_calendar_events(self, executor):
        result = await executor.execute(call("searchCalendarEvents", "c1", query="DINNER"))

        assert result.output["count"] == 1
        assert result.output["events"][0]["id"] == "e2"


class TestExecuteValidation:

    @pytest.mark.asyncio
    async def test_name_instead_of_id_is_rejected_before_dispatch(self, breakers, calendar):
        tasks = AsyncMock()
        executor = ToolExecutor(tasks, calendar, breakers)

        result = await executor.execute(call("createTask", "c1", content="milk", project_id="Groceries"))

        assert result.success is False
        assert result.error.kind == ToolErrorKind.INVALID_INPUT
        assert "findProject" in result.output
        tasks.create_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_schema_violation_is_invalid_input(self, executor):
        result = await executor.execute(call("getTaskDetails", "c1"))

        assert result.error.kind == ToolErrorKind.INVALID_INPUT
        assert "task_id" in result.output

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        result = await executor.execute(call("sendInvoice", "c1"))

        assert result.success is False
        assert result.error.kind == ToolErrorKind.UNKNOWN_TOOL

    @pytest.mark.asyncio
    async def test_input_failures_do_not_open_breaker(self, executor, breakers):
        for i in range(4):
            await executor.execute(call("getTaskDetails", f"c{i}", task_id="Buy milk"))

        assert not breakers.is_open("getTaskDetails")
        assert breakers.state("getTaskDetails").failure_count == 0

    @pytest.mark.asyncio
    async def test_backend_failures_open_breaker_after_input_failures(self, executor, breakers, workspace):
        await executor.execute(call("getTaskDetails", "bad", task_id="Buy milk"))
        workspace.connections["tasks"] = False

        for i in range(3):
            await executor.execute(call("getTaskDetails", f"c{i}", task_id="t1"))

        assert breakers.is_open("getTaskDetails")


class TestExecuteFailures:

    @pytest.mark.asyncio
    async def test_disconnected_provider(self, executor, workspace):
        workspace.connections["tasks"] = False

        result = await executor.execute(call("getProjects", "c1"))

        assert result.success is False
        assert result.error.kind == ToolErrorKind.NOT_CONNECTED
        assert result.output == NOT_CONNECTED_TEMPLATE.format(service="task service")

    @pytest.mark.asyncio
    async def test_missing_task_is_generic_failure(self, executor):
        result = await executor.execute(call("getTaskDetails", "c1", task_id="t99"))

        assert result.error.kind == ToolErrorKind.FAILED
        assert "t99" in result.output

    @pytest.mark.asyncio
    async def test_never_raises_on_unexpected_exception(self, calendar, breakers):
        tasks = AsyncMock()
        tasks.get_projects.side_effect = KeyError("boom")
        executor = ToolExecutor(tasks, calendar, breakers)

        result = await executor.execute(call("getProjects", "c1"))

        assert result.success is False
        assert result.error.kind == ToolErrorKind.FAILED

    @pytest.mark.asyncio
    async def test_three_failures_open_breaker_and_skip_collaborator(self, calendar, breakers):
        tasks = AsyncMock()
        tasks.get_projects.side_effect = ProviderError("rate limit exceeded", status=429)
        executor = ToolExecutor(tasks, calendar, breakers)

        for i in range(3):
            result = await executor.execute(call("getProjects", f"c{i}"))
            assert result.error.kind == ToolErrorKind.RATE_LIMITED

        result = await executor.execute(call("getProjects", "c4"))

        assert tasks.get_projects.await_count == 3
        assert result.error.kind == ToolErrorKind.CIRCUIT_OPEN
        assert result.output == CIRCUIT_OPEN_TEMPLATE.format(tool="getProjects")

    @pytest.mark.asyncio
    async def test_success_resets_breaker(self, calendar, breakers):
        tasks = AsyncMock()
        tasks.get_projects.side_effect = [ProviderError("503"), ProviderError("503"), [], ProviderError("503")]
        executor = ToolExecutor(tasks, calendar, breakers)

        for i in range(4):
            await executor.execute(call("getProjects", f"c{i}"))

        assert breakers.state("getProjects").failure_count == 1
        assert not breakers.is_open("getProjects")
