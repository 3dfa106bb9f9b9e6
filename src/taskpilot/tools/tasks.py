"""
src/taskpilot/tools/tasks.py - task & project collaborator

This module provides the task/project store the executor dispatches to:
- TaskStore: the async interface (CRUD keyed by opaque string ids)
- WorkspaceTaskStore: an implementation over the in-memory Workspace

All ids are opaque provider tokens ("t12", "p3"). Human-readable names are
never accepted where an id is expected; `find_projects` is the supported way
for the model to turn a name into an id.

Connectivity:
- If `ws.connections["tasks"]` is False every call raises ProviderError
  ("not connected"), which is how a disconnected provider account looks.
"""


from __future__ import annotations
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from taskpilot.context.loader import Workspace
from taskpilot.context import selectors
from taskpilot.orchestrator.errors import ProviderError


logger = logging.getLogger(__name__)


class TaskStore(Protocol):

    async def create_task(self, **fields: Any) -> Dict[str, Any]: ...
    async def get_tasks(self, project_id: Optional[str] = None, include_completed: bool = False) -> List[Dict[str, Any]]: ...
    async def get_task(self, task_id: str) -> Dict[str, Any]: ...
    async def update_task(self, task_id: str, **fields: Any) -> Dict[str, Any]: ...
    async def complete_task(self, task_id: str) -> Dict[str, Any]: ...
    async def delete_task(self, task_id: str) -> Dict[str, Any]: ...
    async def create_project(self, name: str, color: Optional[str] = None) -> Dict[str, Any]: ...
    async def get_projects(self) -> List[Dict[str, Any]]: ...
    async def find_projects(self, query: str, limit: int = 5) -> List[Dict[str, Any]]: ...
    async def update_project(self, project_id: str, **fields: Any) -> Dict[str, Any]: ...
    async def delete_project(self, project_id: str) -> Dict[str, Any]: ...
    async def get_project_details(self, project_id: str) -> Dict[str, Any]: ...
    async def get_project_and_task_map(self) -> Dict[str, Any]: ...


# --- Helpers -------------------------------------------------------------------
_TASK_FIELDS = {"content", "description", "project_id", "priority", "due_string", "due_date", "labels", "is_completed"}
_PROJECT_FIELDS = {"name", "color"}


def _next_id(items: List[Dict[str, Any]], prefix: str) -> str:
    """
    Internal: generate a simple unique id for a new record.
    Looks for existing numeric tails and increments.
    """

    best = 0

    for item in items:
        tail = "".join(ch for ch in str(item.get("id", "")) if ch.isdigit())
        best = max(best, int(tail or 0))

    return f"{prefix}{best+1}"


class WorkspaceTaskStore:
    """Task/project CRUD against a Workspace, shaped like a provider API."""

    def __init__(self, ws: Workspace):

        self.ws = ws
        self.calls = 0

    def _require_connection(self) -> None:
        """Internal: every call counts and fails fast when disconnected."""

        self.calls += 1

        if not self.ws.connections.get("tasks", True):
            raise ProviderError("Task provider not connected")

    def _require_task(self, task_id: str) -> Dict[str, Any]:

        task = selectors.get_task_by_id(self.ws, task_id)

        if task is None:
            raise ProviderError(f"Task not found: {task_id}", status=404)

        return task

    def _require_project(self, project_id: str) -> Dict[str, Any]:

        project = selectors.get_project_by_id(self.ws, project_id)

        if project is None:
            raise ProviderError(f"Project not found: {project_id}", status=404)

        return project

    # --- Tasks -----------------------------------------------------------------
    async def create_task(self, **fields: Any) -> Dict[str, Any]:

        self._require_connection()

        content = (fields.get("content") or "").strip()

        if not content:
            raise ProviderError("Task content must not be empty", status=400)

        if fields.get("project_id"):
            self._require_project(fields["project_id"])

        task = {
            "id": _next_id(self.ws.tasks, "t"),
            "content": content,
            "description": fields.get("description") or "",
            "project_id": fields.get("project_id"),
            "priority": fields.get("priority") or 1,
            "due_string": fields.get("due_string"),
            "due_date": fields.get("due_date"),
            "labels": list(fields.get("labels") or []),
            "is_completed": False,
            "created_at": int(time.time() * 1000),
        }
        self.ws.tasks.append(task)
        logger.info("Created task %s in project %s", task["id"], task["project_id"] or "inbox")

        return dict(task)

    async def get_tasks(self, project_id: Optional[str] = None, include_completed: bool = False) -> List[Dict[str, Any]]:

        self._require_connection()

        tasks = selectors.get_tasks_for_project(self.ws, project_id, include_completed=include_completed)

        def sort_key(t: Dict[str, Any]):

            return (t.get("due_date") or "9999-12-31", t.get("content") or "")

        return [dict(t) for t in sorted(tasks, key=sort_key)]

    async def get_task(self, task_id: str) -> Dict[str, Any]:

        self._require_connection()

        return dict(self._require_task(task_id))

    async def update_task(self, task_id: str, **fields: Any) -> Dict[str, Any]:

        self._require_connection()
        task = self._require_task(task_id)

        if fields.get("project_id"):
            self._require_project(fields["project_id"])

        for key, value in fields.items():
            if key in _TASK_FIELDS and value is not None:
                task[key] = value

        return dict(task)

    async def complete_task(self, task_id: str) -> Dict[str, Any]:

        self._require_connection()
        task = self._require_task(task_id)
        task["is_completed"] = True

        return dict(task)

    async def delete_task(self, task_id: str) -> Dict[str, Any]:

        self._require_connection()
        task = self._require_task(task_id)
        self.ws.tasks.remove(task)

        return {"id": task_id, "content": task["content"], "deleted": True}

    # --- Projects --------------------------------------------------------------
    async def create_project(self, name: str, color: Optional[str] = None) -> Dict[str, Any]:

        self._require_connection()

        if not name.strip():
            raise ProviderError("Project name must not be empty", status=400)

        project = {"id": _next_id(self.ws.projects, "p"), "name": name.strip(), "color": color or "grey"}
        self.ws.projects.append(project)

        return dict(project)

    async def get_projects(self) -> List[Dict[str, Any]]:

        self._require_connection()

        return [dict(p) for p in self.ws.projects]

    async def find_projects(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Fuzzy name search; the only path from a project name to its id."""

        self._require_connection()

        return [
            {"id": p["id"], "name": p["name"], "score": score}
            for p, score in selectors.find_project_candidates(self.ws, query, limit=limit)
        ]

    async def update_project(self, project_id: str, **fields: Any) -> Dict[str, Any]:

        self._require_connection()
        project = self._require_project(project_id)

        for key, value in fields.items():
            if key in _PROJECT_FIELDS and value is not None:
                project[key] = value

        return dict(project)

    async def delete_project(self, project_id: str) -> Dict[str, Any]:

        self._require_connection()
        project = self._require_project(project_id)
        removed = [t for t in self.ws.tasks if t.get("project_id") == project_id]
        self.ws.projects.remove(project)
        self.ws.tasks[:] = [t for t in self.ws.tasks if t.get("project_id") != project_id]

        return {"id": project_id, "name": project["name"], "deleted": True, "deleted_tasks": len(removed)}

    async def get_project_details(self, project_id: str) -> Dict[str, Any]:

        self._require_connection()
        project = self._require_project(project_id)
        tasks = [dict(t) for t in self.ws.tasks if t.get("project_id") == project_id]

        return {
            **project,
            "tasks": tasks,
            "task_count": len(tasks),
            "completed_count": sum(1 for t in tasks if t.get("is_completed")),
        }

    async def get_project_and_task_map(self) -> Dict[str, Any]:

        self._require_connection()

        def brief(t: Dict[str, Any]) -> Dict[str, Any]:

            return {"id": t["id"], "content": t["content"], "is_completed": t.get("is_completed", False)}

        projects = [
            {
                "id": p["id"],
                "name": p["name"],
                "tasks": [brief(t) for t in self.ws.tasks if t.get("project_id") == p["id"]],
            }
            for p in self.ws.projects
        ]
        inbox = [brief(t) for t in self.ws.tasks if not t.get("project_id")]

        return {"projects": projects, "inbox": inbox}
# EOF
