"""
src/taskpilot/context/conversations.py

Conversation store collaborator: the interface the orchestrator needs and an
in-memory implementation used by the demo app and tests.
"""


import copy
from typing import Any, Dict, List, Optional, Protocol


DEFAULT_SESSION = "default"


class ConversationStore(Protocol):

    async def get_conversation(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    async def upsert_conversation(self, session_id: str, history: List[Dict[str, Any]]) -> None:
        ...


class InMemoryConversationStore:
    """Keeps one history list per session id. Copies in and out."""

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):

        self._sessions: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(seed or {})
        self.writes = 0

    async def get_conversation(self, session_id: str) -> List[Dict[str, Any]]:

        return copy.deepcopy(self._sessions.get(session_id or DEFAULT_SESSION, []))

    async def upsert_conversation(self, session_id: str, history: List[Dict[str, Any]]) -> None:

        self._sessions[session_id or DEFAULT_SESSION] = copy.deepcopy(history)
        self.writes += 1
# EOF
