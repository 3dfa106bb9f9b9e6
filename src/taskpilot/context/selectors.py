"""
src/taskpilot/context/selectors.py
"""


from typing import Dict, List, Optional, Tuple

from rapidfuzz import fuzz, process, utils

from taskpilot.context.loader import Workspace


def find_project_candidates(ws: Workspace, query: str, limit: int = 5, min_score: int = 60) -> List[Tuple[Dict, int]]:
    """Return [(project, score), ...] sorted by fuzzy match score."""

    names = [p["name"] for p in ws.projects]

    if not names or not query.strip():
        return []

    matches = process.extract(query, names, scorer=fuzz.WRatio, processor=utils.default_process, limit=limit)

    # matches: [(name, score, index)]
    out = []
    for name, score, idx in matches:
        if score >= min_score:
            out.append((ws.projects[idx], int(score)))

    return out

def get_project_by_id(ws: Workspace, project_id: str) -> Optional[Dict]:

    return next((p for p in ws.projects if p["id"] == project_id), None)

def get_task_by_id(ws: Workspace, task_id: str) -> Optional[Dict]:

    return next((t for t in ws.tasks if t["id"] == task_id), None)

def get_event_by_id(ws: Workspace, event_id: str) -> Optional[Dict]:

    return next((e for e in ws.events if e["id"] == event_id), None)

def get_tasks_for_project(ws: Workspace, project_id: Optional[str], include_completed: bool = False) -> List[Dict]:

    return [
        t for t in ws.tasks
        if (project_id is None or t.get("project_id") == project_id)
        and (include_completed or not t.get("is_completed"))
    ]
# EOF
