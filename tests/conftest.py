"""Shared fixtures: seeded workspace, fake clock, scripted model, wired orchestrator."""

import copy
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from taskpilot.config import AssistantSettings
from taskpilot.context.conversations import InMemoryConversationStore
from taskpilot.context.loader import Workspace
from taskpilot.orchestrator.models import ModelResponse, ToolInvocation
from taskpilot.orchestrator.router import Orchestrator
from taskpilot.streaming.compat import StreamingBridge
from taskpilot.streaming.event_log import StreamEventLog
from taskpilot.streaming.legacy import LegacyStreamStore
from taskpilot.tools.calendar import WorkspaceCalendar
from taskpilot.tools.circuit_breaker import CircuitBreakerStore
from taskpilot.tools.executor import ToolExecutor
from taskpilot.tools.tasks import WorkspaceTaskStore


SEED: Dict[str, Any] = {
    "projects": [
        {"id": "p1", "name": "Inbox", "color": "grey"},
        {"id": "p2", "name": "Groceries", "color": "green"},
        {"id": "p3", "name": "Home Renovation", "color": "orange"},
    ],
    "tasks": [
        {"id": "t1", "content": "Buy oat milk", "project_id": "p2", "priority": 1, "is_completed": False},
        {"id": "t2", "content": "Pick up eggs", "project_id": "p2", "priority": 1, "due_date": "2026-10-17", "is_completed": False},
        {"id": "t3", "content": "Get quotes for kitchen tiles", "project_id": "p3", "priority": 3, "is_completed": False},
        {"id": "t4", "content": "Book electrician", "project_id": "p3", "priority": 4, "is_completed": True},
    ],
    "events": [
        {"id": "e1", "summary": "Launch sync", "start": "2026-10-19T10:00:00+00:00"},
        {"id": "e2", "summary": "Dinner with Sam", "start": "2026-10-21T19:30:00+00:00"},
    ],
    "connections": {"tasks": True, "calendar": True},
}


class FakeClock:
    """Manually advanced clock for breaker windows and retention."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def call(name: str, call_id: str, /, **args: Any) -> ToolInvocation:
    return ToolInvocation(tool_name=name, tool_call_id=call_id, input=args)


def text(content: str) -> ModelResponse:
    return ModelResponse(text=content)


def calls(*invocations: ToolInvocation, content: str = "") -> ModelResponse:
    return ModelResponse(text=content, tool_calls=list(invocations))


Step = Union[ModelResponse, Exception, Callable[[List[Dict[str, Any]]], ModelResponse]]


class ScriptedModel:
    """ModelClient that replays a fixed script and records what it was sent."""

    def __init__(self, script: List[Step]):
        self.script = list(script)
        self.requests: List[Dict[str, Any]] = []

    async def generate(self, model, system_prompt, messages, tools, max_steps) -> ModelResponse:
        self.requests.append({"model": model, "messages": messages, "tools": tools})
        if not self.script:
            raise AssertionError("ScriptedModel ran out of responses")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages)
        return step


@pytest.fixture
def workspace() -> Workspace:
    return Workspace(copy.deepcopy(SEED))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def task_store(workspace) -> WorkspaceTaskStore:
    return WorkspaceTaskStore(workspace)


@pytest.fixture
def calendar(workspace) -> WorkspaceCalendar:
    return WorkspaceCalendar(workspace)


@pytest.fixture
def breakers(clock) -> CircuitBreakerStore:
    return CircuitBreakerStore(clock=clock)


@pytest.fixture
def executor(task_store, calendar, breakers) -> ToolExecutor:
    return ToolExecutor(task_store, calendar, breakers)


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def event_log(clock) -> StreamEventLog:
    return StreamEventLog(clock=clock)


@pytest.fixture
def legacy(clock) -> LegacyStreamStore:
    return LegacyStreamStore(clock=clock)


@pytest.fixture
def bridge(event_log, legacy) -> StreamingBridge:
    return StreamingBridge(event_log, legacy)


@pytest.fixture
def make_orchestrator(executor, conversations, bridge):
    """Factory: orchestrator over a scripted model with the shared fixtures."""

    def _make(script: List[Step], *, max_steps: int = 8, executor_override: Optional[Any] = None) -> Orchestrator:
        counter = iter(range(1, 1000))
        return Orchestrator(
            ScriptedModel(script),
            executor_override or executor,
            conversations,
            bridge=bridge,
            settings=AssistantSettings(max_steps=max_steps),
            stream_id_factory=lambda: f"s{next(counter)}",
        )

    return _make
