"""
src/taskpilot/tools/executor.py - tool execution bridge

ToolExecutor.execute(invocation) always returns a ToolResult:
1. open circuit breaker -> "temporarily unavailable", nothing dispatched
2. registry validation + id checks -> invalid_input, nothing dispatched
3. dispatch to the task store / calendar / clock and shape the output
   (batch tools report each item under `successful` or `failed`)
4. collaborator errors -> one of a fixed set of user-facing messages

Steps 1 and the breaker bookkeeping live in `circuit_protected`.
Conversation state is never touched here.
"""


import logging
import re
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from taskpilot.config import ID_PATTERN
from taskpilot.orchestrator.errors import ProviderError, ToolInputError
from taskpilot.orchestrator.models import ToolErrorKind, ToolInvocation, ToolResult
from taskpilot.tools.calendar import Calendar, current_time
from taskpilot.tools.circuit_breaker import CircuitBreakerStore, circuit_protected
from taskpilot.tools.registry import ToolInput, ToolSpec, get_spec, parse_input
from taskpilot.tools.tasks import TaskStore


logger = logging.getLogger(__name__)


# --- User-facing failure templates ---------------------------------------------
NOT_CONNECTED_TEMPLATE = "Your {service} account is not connected. Please connect it in Settings and try again."
AUTH_EXPIRED_TEMPLATE = "Your {service} connection expired. Please reconnect your account in Settings."
RATE_LIMITED_TEMPLATE = "The {service} is receiving too many requests right now. Please wait a moment and try again."
UPSTREAM_TEMPLATE = "The {service} is having problems right now. Please try again in a few minutes."
GENERIC_TEMPLATE = "Sorry, I couldn't complete {tool}: {detail}"

_SERVICES = {"tasks": "task service", "calendar": "calendar service", "clock": "clock"}
_ID_HINTS = {
    "task_id": "Use getTasks or getProjectAndTaskMap to look up the task id.",
    "project_id": "Use findProject or getProjects to look up the project id.",
    "event_id": "Use listCalendarEvents to look up the event id.",
}
_TASK_OUTPUT_FIELDS = ("id", "content", "description", "project_id", "priority", "due_string", "due_date", "labels", "is_completed")


def _code(text: str, pattern: str) -> bool:
    """Internal: a bare HTTP status code in an error message (not part of an id)."""

    return re.search(rf"\b{pattern}\b", text) is not None


def classify_failure(tool_name: str, service: str, exc: Exception, limit: int = 200) -> Tuple[ToolErrorKind, str]:
    """Map a collaborator exception to (kind, user-facing message)."""

    message = str(exc) or exc.__class__.__name__
    low = message.lower()
    status = getattr(exc, "status", None)

    if "not connected" in low:
        return ToolErrorKind.NOT_CONNECTED, NOT_CONNECTED_TEMPLATE.format(service=service)

    if status == 401 or any(s in low for s in ("expired", "unauthorized", "authentication")) or _code(low, "401"):
        return ToolErrorKind.AUTH_EXPIRED, AUTH_EXPIRED_TEMPLATE.format(service=service)

    if status == 429 or any(s in low for s in ("rate limit", "too many requests")) or _code(low, "429"):
        return ToolErrorKind.RATE_LIMITED, RATE_LIMITED_TEMPLATE.format(service=service)

    if (status is not None and status >= 500) or any(s in low for s in ("server error", "unavailable")) or _code(low, r"5\d\d"):
        return ToolErrorKind.UPSTREAM, UPSTREAM_TEMPLATE.format(service=service)

    detail = message if len(message) <= limit else message[:limit] + "..."

    return ToolErrorKind.FAILED, GENERIC_TEMPLATE.format(tool=tool_name, detail=detail)


def _id_problem(field: str, value: Optional[str]) -> Optional[str]:

    if value is not None and not ID_PATTERN.match(value):
        return f'Invalid {field} "{value}". {_ID_HINTS[field]}'

    return None


def check_ids(spec: ToolSpec, params: ToolInput) -> None:
    """Reject human-readable names where an opaque provider id is expected."""

    for path in spec.id_fields:
        value: Any = params
        for part in path.split("."):
            value = getattr(value, part, None)
        problem = _id_problem(path.rsplit(".", 1)[-1], value)
        if problem:
            raise ToolInputError(spec.name, problem)


def _task_output(task: Dict[str, Any]) -> Dict[str, Any]:

    return {k: task[k] for k in _TASK_OUTPUT_FIELDS if k in task}


def _shift_date(value: str, days: int) -> str:

    try:
        base = date.fromisoformat(value[:10])
    except ValueError:
        raise ProviderError(f"Cannot shift due date '{value}': not YYYY-MM-DD", status=400)

    return (base + timedelta(days=days)).isoformat()


def _item_ids(item: Any) -> Dict[str, Optional[str]]:
    """Internal: the id fields one batch item carries (a bare string is a task id)."""

    if isinstance(item, str):
        return {"task_id": item}

    return {f: getattr(item, f, None) for f in ("task_id", "project_id")}


class ToolExecutor:

    def __init__(
        self,
        tasks: TaskStore,
        calendar: Calendar,
        breakers: Optional[CircuitBreakerStore] = None,
        clock: Callable[..., Dict[str, Any]] = current_time,
    ):

        self.tasks = tasks
        self.calendar = calendar
        self.breakers = breakers if breakers is not None else CircuitBreakerStore()
        self.clock = clock

    @circuit_protected
    async def execute(self, invocation: ToolInvocation) -> ToolResult:

        spec = get_spec(invocation.tool_name)

        if spec is None:
            logger.warning("Unknown tool %s requested", invocation.tool_name)
            return ToolResult.failed(invocation, ToolErrorKind.UNKNOWN_TOOL, f"I don't have a tool called {invocation.tool_name}.")

        try:
            params = parse_input(spec.name, dict(invocation.input))
            check_ids(spec, params)
        except ToolInputError as e:
            logger.info("Rejected %s input: %s", spec.name, e)
            return ToolResult.failed(invocation, ToolErrorKind.INVALID_INPUT, str(e))

        logger.info("Tool %s started (%s)", spec.name, invocation.tool_call_id)

        try:
            output = await self._dispatch(spec, params)
        except Exception as e:
            kind, user_message = classify_failure(spec.name, _SERVICES[spec.collaborator], e)
            logger.warning("Tool %s failed (%s): %s", spec.name, kind.value, e)
            return ToolResult.failed(invocation, kind, user_message, detail=str(e))

        logger.info("Tool %s finished (%s)", spec.name, invocation.tool_call_id)

        return ToolResult.ok(invocation, output)

    async def _dispatch(self, spec: ToolSpec, params: ToolInput) -> Any:
        """Call the collaborator for `spec.name` and shape its result."""

        name = spec.name
        args = params.model_dump(exclude_none=True)

        # Tasks
        if name == "createTask":
            return _task_output(await self.tasks.create_task(**args))
        elif name == "getTasks":
            tasks = await self.tasks.get_tasks(args.get("project_id"), include_completed=args.get("include_completed", False))
            return {"tasks": [_task_output(t) for t in tasks], "count": len(tasks)}
        elif name == "getTaskDetails":
            return _task_output(await self.tasks.get_task(args["task_id"]))
        elif name == "updateTask":
            task_id = args.pop("task_id")
            return _task_output(await self.tasks.update_task(task_id, **args))
        elif name == "completeTask":
            return _task_output(await self.tasks.complete_task(args["task_id"]))
        elif name == "deleteTask":
            return await self.tasks.delete_task(args["task_id"])

        # Batches
        elif name == "createBatchTasks":
            async def create(item):
                return _task_output(await self.tasks.create_task(**item.model_dump(exclude_none=True)))
            return await self._run_batch("Batch task creation completed", params.tasks, create)
        elif name == "updateBatchTasks":
            async def update(item):
                fields = item.model_dump(exclude_none=True)
                return _task_output(await self.tasks.update_task(fields.pop("task_id"), **fields))
            return await self._run_batch("Batch task update completed", params.updates, update)
        elif name == "completeBatchTasks":
            async def complete(task_id):
                return _task_output(await self.tasks.complete_task(task_id))
            return await self._run_batch("Batch task completion finished", params.task_ids, complete)
        elif name == "deleteBatchTasks":
            return await self._run_batch("Batch task deletion completed", params.task_ids, self.tasks.delete_task)
        elif name == "reorganizeTasksBatch":
            mods = args["modifications"]
            changes = ", ".join(f"{k}={v}" for k, v in mods.items()) or "no changes"
            async def reorganize(task_id):
                return await self._reorganize(task_id, mods)
            return await self._run_batch(f"Reorganized tasks ({changes})", params.task_ids, reorganize)

        # Projects
        elif name == "createProject":
            return await self.tasks.create_project(args["name"], color=args.get("color"))
        elif name == "getProjects":
            projects = await self.tasks.get_projects()
            return {"projects": projects, "count": len(projects)}
        elif name == "findProject":
            matches = await self.tasks.find_projects(args["query"], limit=args.get("limit", 5))
            return {"query": args["query"], "matches": matches}
        elif name == "updateProject":
            project_id = args.pop("project_id")
            return await self.tasks.update_project(project_id, **args)
        elif name == "deleteProject":
            return await self.tasks.delete_project(args["project_id"])
        elif name == "getProjectAndTaskMap":
            return await self.tasks.get_project_and_task_map()
        elif name == "getProjectDetails":
            details = await self.tasks.get_project_details(args["project_id"])
            return {**details, "tasks": [_task_output(t) for t in details.get("tasks", [])]}
        elif name == "createProjectWithTasks":
            project = await self.tasks.create_project(args["name"], color=args.get("color"))
            async def create_in_project(item):
                fields = item.model_dump(exclude_none=True)
                return _task_output(await self.tasks.create_task(project_id=project["id"], **fields))
            batch = await self._run_batch(f"Project '{project['name']}' created with tasks", params.tasks, create_in_project)
            return {"project_id": project["id"], "project_name": project["name"], **batch}

        # Calendar
        elif name == "createCalendarEvent":
            return await self.calendar.create_event(**args)
        elif name == "listCalendarEvents":
            events = await self.calendar.list_events(args.get("time_min"), args.get("time_max"), max_results=args.get("max_results", 10))
            return {"events": events, "count": len(events)}
        elif name == "updateCalendarEvent":
            event_id = args.pop("event_id")
            return await self.calendar.update_event(event_id, **args)
        elif name == "deleteCalendarEvent":
            return await self.calendar.delete_event(args["event_id"])
        elif name == "searchCalendarEvents":
            events = await self.calendar.search_events(
                args["query"], args.get("time_min"), args.get("time_max"), max_results=args.get("max_results", 20),
            )
            return {"query": args["query"], "events": events, "count": len(events)}

        # Utility
        elif name == "getCurrentTime":
            return self.clock(args.get("time_zone"))

        raise ToolInputError(name, f"No dispatcher for tool {name}")

    async def _run_batch(self, label: str, items: List[Any], run: Callable[[Any], Awaitable[Any]]) -> Dict[str, Any]:
        """
        Apply `run` to each item in order. An item with a bad id, or one the
        provider rejects (not found, invalid), lands in `failed` and the rest
        carry on. Connection, auth, rate-limit and upstream failures abort the
        whole call so it is reported and counted like any other tool failure.
        """

        successful: List[Any] = []
        failed: List[Dict[str, Any]] = []

        for index, item in enumerate(items):
            ids = _item_ids(item)
            ref = ids.get("task_id") or getattr(item, "content", None)
            problem = next((p for p in (_id_problem(f, v) for f, v in ids.items()) if p), None)

            if problem is None:
                try:
                    successful.append(await run(item))
                    continue
                except Exception as e:
                    kind, _ = classify_failure(label, _SERVICES["tasks"], e)
                    if kind != ToolErrorKind.FAILED:
                        raise
                    problem = str(e)

            logger.info("Batch item %d (%s) failed: %s", index, ref, problem)
            failed.append({"index": index, "item": ref, "error": problem})

        return {
            "summary": f"{label}: {len(successful)} successful, {len(failed)} failed",
            "successful": successful,
            "failed": failed,
        }

    async def _reorganize(self, task_id: str, mods: Dict[str, Any]) -> Dict[str, Any]:

        fields = dict(mods)
        add_days = fields.pop("add_days", None)

        if add_days:
            task = await self.tasks.get_task(task_id)
            base = fields.get("due_date") or task.get("due_date") or self.clock()["date"]
            fields["due_date"] = _shift_date(base, add_days)

        return _task_output(await self.tasks.update_task(task_id, **fields))
# EOF
