"""
src/taskpilot/context/loader.py

In-memory workspace (projects, tasks, calendar events) seeded from JSON.
"""


import json
from pathlib import Path
from typing import Any, Dict, Optional


WORKSPACE_PATH = Path(__file__).resolve().parents[3] / "data" / "workspace.json"


class Workspace:

    def __init__(self, data: Optional[Dict[str, Any]] = None):

        data = data or {}
        self.projects = data.get("projects", [])
        self.tasks = data.get("tasks", [])
        self.events = data.get("events", [])
        # Simulated provider connectivity; tools fail with "not connected" when False
        self.connections = data.get("connections", {"tasks": True, "calendar": True})


def load_workspace(path: Path = WORKSPACE_PATH) -> Workspace:

    if not path.exists():
        raise FileNotFoundError(f"Workspace file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    # Sanity checks
    required = ["projects", "tasks"]

    for key in required:
        if key not in data:
            raise ValueError(f"workspace.json missing '{key}'")

    return Workspace(data)
# EOF
