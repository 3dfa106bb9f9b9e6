"""
src/taskpilot/tools/registry.py - tool names, descriptions and input models

A static mapping from tool name to ToolSpec. Each tool's arguments are their
own pydantic model, so the executor only ever sees validated, typed input.
Nothing here executes anything.

Adding a tool is additive. Removing one breaks any conversation that still
references it in history, which the normalizer tolerates.
"""


from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from taskpilot.orchestrator.errors import ToolInputError


class ToolInput(BaseModel):

    model_config = ConfigDict(extra="forbid")


# --- Tasks ---------------------------------------------------------------------
class CreateTaskInput(ToolInput):

    content: str = Field(min_length=1, description="Task title, e.g. 'Call the dentist'")
    description: Optional[str] = None
    project_id: Optional[str] = Field(default=None, description="Project id from findProject/getProjects, never a name")
    priority: Optional[int] = Field(default=None, ge=1, le=4, description="1 (normal) to 4 (urgent)")
    due_string: Optional[str] = Field(default=None, description="Natural language due date, e.g. 'tomorrow at 2pm'")
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    labels: Optional[List[str]] = None


class GetTasksInput(ToolInput):

    project_id: Optional[str] = None
    include_completed: bool = False


class TaskIdInput(ToolInput):

    task_id: str


class UpdateTaskInput(ToolInput):

    task_id: str
    content: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_string: Optional[str] = None
    due_date: Optional[str] = None
    labels: Optional[List[str]] = None


class TaskIdsInput(ToolInput):

    task_ids: List[str] = Field(min_length=1, max_length=50, description="Task ids from getTasks or getProjectAndTaskMap")


class CreateBatchTasksInput(ToolInput):

    tasks: List[CreateTaskInput] = Field(min_length=1, max_length=50)


class BatchTaskUpdate(UpdateTaskInput):

    is_completed: Optional[bool] = None


class UpdateBatchTasksInput(ToolInput):

    updates: List[BatchTaskUpdate] = Field(min_length=1, max_length=50)


class TaskModifications(ToolInput):
    """The same changes, applied to every task in a reorganize call."""

    project_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_string: Optional[str] = None
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    add_days: Optional[int] = Field(default=None, description="Shift each due date by this many days (negative moves earlier)")
    is_completed: Optional[bool] = None


class ReorganizeTasksInput(ToolInput):

    task_ids: List[str] = Field(min_length=1, max_length=50)
    modifications: TaskModifications


# --- Projects ------------------------------------------------------------------
class CreateProjectInput(ToolInput):

    name: str = Field(min_length=1)
    color: Optional[str] = None


class NoInput(ToolInput):

    pass


class FindProjectInput(ToolInput):

    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=20)


class UpdateProjectInput(ToolInput):

    project_id: str
    name: Optional[str] = None
    color: Optional[str] = None


class ProjectIdInput(ToolInput):

    project_id: str


class ProjectTask(ToolInput):

    content: str = Field(min_length=1)
    description: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_string: Optional[str] = None
    due_date: Optional[str] = None
    labels: Optional[List[str]] = None


class CreateProjectWithTasksInput(ToolInput):

    name: str = Field(min_length=1)
    color: Optional[str] = None
    tasks: List[ProjectTask] = Field(default_factory=list, max_length=40)


# --- Calendar ------------------------------------------------------------------
class CreateCalendarEventInput(ToolInput):

    summary: str = Field(min_length=1)
    start: str = Field(description="ISO-8601 or natural language, passed through as given")
    end: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    time_zone: Optional[str] = None


class ListCalendarEventsInput(ToolInput):

    time_min: Optional[str] = None
    time_max: Optional[str] = None
    max_results: int = Field(default=10, ge=1, le=100)


class UpdateCalendarEventInput(ToolInput):

    event_id: str
    summary: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    time_zone: Optional[str] = None


class EventIdInput(ToolInput):

    event_id: str


class SearchCalendarEventsInput(ToolInput):

    query: str = Field(min_length=1, description="Matched against title, description and location")
    time_min: Optional[str] = None
    time_max: Optional[str] = None
    max_results: int = Field(default=20, ge=1, le=100)


class GetCurrentTimeInput(ToolInput):

    time_zone: Optional[str] = Field(default=None, description="IANA name, e.g. 'Europe/London'")


# --- Registry ------------------------------------------------------------------
class ToolSpec(BaseModel):

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_model: Type[ToolInput]
    collaborator: Literal["tasks", "calendar", "clock"]
    id_fields: Tuple[str, ...] = ()


_SPECS = [
    ToolSpec(name="createTask", description="Create a task. Use project_id from findProject, never a project name.",
             input_model=CreateTaskInput, collaborator="tasks", id_fields=("project_id",)),
    ToolSpec(name="getTasks", description="List open tasks, optionally for one project.",
             input_model=GetTasksInput, collaborator="tasks", id_fields=("project_id",)),
    ToolSpec(name="getTaskDetails", description="Get one task by id.",
             input_model=TaskIdInput, collaborator="tasks", id_fields=("task_id",)),
    ToolSpec(name="updateTask", description="Change a task's fields. Only pass what changes.",
             input_model=UpdateTaskInput, collaborator="tasks", id_fields=("task_id", "project_id")),
    ToolSpec(name="completeTask", description="Mark a task as done.",
             input_model=TaskIdInput, collaborator="tasks", id_fields=("task_id",)),
    ToolSpec(name="deleteTask", description="Delete a task permanently.",
             input_model=TaskIdInput, collaborator="tasks", id_fields=("task_id",)),
    ToolSpec(name="createBatchTasks", description="Create up to 50 tasks in one call. Each task may carry its own project_id.",
             input_model=CreateBatchTasksInput, collaborator="tasks"),
    ToolSpec(name="updateBatchTasks", description="Apply per-task changes to up to 50 tasks. Only pass what changes.",
             input_model=UpdateBatchTasksInput, collaborator="tasks"),
    ToolSpec(name="completeBatchTasks", description="Mark up to 50 tasks as done.",
             input_model=TaskIdsInput, collaborator="tasks"),
    ToolSpec(name="deleteBatchTasks", description="Delete up to 50 tasks permanently.",
             input_model=TaskIdsInput, collaborator="tasks"),
    ToolSpec(name="reorganizeTasksBatch", description="Apply the same changes (project, priority, due date, add_days, completion) to up to 50 tasks.",
             input_model=ReorganizeTasksInput, collaborator="tasks", id_fields=("modifications.project_id",)),
    ToolSpec(name="createProject", description="Create a project.",
             input_model=CreateProjectInput, collaborator="tasks"),
    ToolSpec(name="getProjects", description="List all projects with their ids.",
             input_model=NoInput, collaborator="tasks"),
    ToolSpec(name="findProject", description="Fuzzy-find projects by name; returns ids and match scores.",
             input_model=FindProjectInput, collaborator="tasks"),
    ToolSpec(name="updateProject", description="Rename or recolour a project.",
             input_model=UpdateProjectInput, collaborator="tasks", id_fields=("project_id",)),
    ToolSpec(name="deleteProject", description="Delete a project and its tasks.",
             input_model=ProjectIdInput, collaborator="tasks", id_fields=("project_id",)),
    ToolSpec(name="getProjectDetails", description="Get one project with all of its tasks.",
             input_model=ProjectIdInput, collaborator="tasks", id_fields=("project_id",)),
    ToolSpec(name="createProjectWithTasks", description="Create a project and up to 40 tasks inside it in one call.",
             input_model=CreateProjectWithTasksInput, collaborator="tasks"),
    ToolSpec(name="getProjectAndTaskMap", description="Overview of every project with its tasks, plus inbox tasks.",
             input_model=NoInput, collaborator="tasks"),
    ToolSpec(name="createCalendarEvent", description="Create a calendar event.",
             input_model=CreateCalendarEventInput, collaborator="calendar"),
    ToolSpec(name="listCalendarEvents", description="List calendar events in a time window.",
             input_model=ListCalendarEventsInput, collaborator="calendar"),
    ToolSpec(name="updateCalendarEvent", description="Change a calendar event. Only pass what changes.",
             input_model=UpdateCalendarEventInput, collaborator="calendar", id_fields=("event_id",)),
    ToolSpec(name="deleteCalendarEvent", description="Delete a calendar event.",
             input_model=EventIdInput, collaborator="calendar", id_fields=("event_id",)),
    ToolSpec(name="searchCalendarEvents", description="Find calendar events whose title, description or location contains the query.",
             input_model=SearchCalendarEventsInput, collaborator="calendar"),
    ToolSpec(name="getCurrentTime", description="Current date and time, to resolve 'today', 'tomorrow', etc.",
             input_model=GetCurrentTimeInput, collaborator="clock"),
]

REGISTRY: Dict[str, ToolSpec] = {spec.name: spec for spec in _SPECS}


def get_spec(name: str) -> Optional[ToolSpec]:

    return REGISTRY.get(name)


def _tool_spec(name: str, description: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Build an OpenAI function spec."""

    schema = {
        "type": "object",
        "properties": parameters.get("properties", {}),
        "required": parameters.get("required", []),
        "additionalProperties": False,
    }

    # Nested item models are referenced as #/$defs/...
    if "$defs" in parameters:
        schema["$defs"] = parameters["$defs"]

    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": schema,
        },
    }

def to_openai_tools() -> List[Dict[str, Any]]:
    """The registry as OpenAI function specs, schemas taken from the input models."""

    return [
        _tool_spec(spec.name, spec.description, spec.input_model.model_json_schema())
        for spec in REGISTRY.values()
    ]

def parse_input(name: str, raw: Any) -> ToolInput:
    """Validate raw model arguments for `name`. Raises ToolInputError."""

    spec = REGISTRY.get(name)

    if spec is None:
        raise ToolInputError(name, f"Unknown tool: {name}")

    if not isinstance(raw, dict):
        raise ToolInputError(name, f"Arguments for {name} must be an object")

    try:
        return spec.input_model.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
            for err in e.errors()
        )
        raise ToolInputError(name, f"Invalid arguments for {name}: {problems}") from e
# EOF
