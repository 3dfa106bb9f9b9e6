"""
src/taskpilot/orchestrator/loop_guard.py

Run-scoped cycle detection. One LoopGuard per orchestration run; nothing
survives the run.
- check_and_record(fingerprint): a fingerprint seen twice means the
  conversation state repeated -> ConversationLoopError
- record_tool_calls(names): a tool appearing in OSCILLATION_CEILING steps
  -> ToolOscillationError

The fingerprint is a heuristic over truncated state. Two different requests
can collide and a real loop that varies outside the tracked fields can slip
through; the truncation lengths are tunable in taskpilot.config.
"""


from typing import Dict, Iterable, List, Optional, Set

from taskpilot.config import (
    FINGERPRINT_MESSAGE_CHARS,
    FINGERPRINT_RECENT_ROLES,
    FINGERPRINT_USER_CHARS,
    OSCILLATION_CEILING,
)
from taskpilot.orchestrator.errors import ConversationLoopError, ToolOscillationError


def build_fingerprint(
    user_id: Optional[str],
    message: str,
    history_length: int,
    recent_roles: Iterable[str],
    prior_tool_names: Iterable[str],
) -> str:

    roles = list(recent_roles)[-FINGERPRINT_RECENT_ROLES:]

    return "|".join([
        (user_id or "anonymous")[:FINGERPRINT_USER_CHARS],
        (message or "")[:FINGERPRINT_MESSAGE_CHARS],
        str(history_length),
        ",".join(roles),
        ",".join(sorted(set(prior_tool_names))),
    ])


class LoopGuard:

    def __init__(self, ceiling: int = OSCILLATION_CEILING):

        self.ceiling = ceiling
        self.seen: Set[str] = set()
        self.tool_counts: Dict[str, int] = {}

    def check_and_record(self, fingerprint: str) -> None:

        if fingerprint in self.seen:
            raise ConversationLoopError("conversation loop detected", diagnostic=fingerprint[:200])

        self.seen.add(fingerprint)

    def record_tool_calls(self, names: List[str]) -> None:
        """Count each distinct tool once for this step; raise when one hits the ceiling."""

        for name in sorted(set(names)):
            self.tool_counts[name] = self.tool_counts.get(name, 0) + 1

        worst = [n for n in sorted(set(names)) if self.tool_counts[n] >= self.ceiling]

        if worst:
            state = ", ".join(f"{n}={self.tool_counts[n]}" for n in worst)
            raise ToolOscillationError("oscillation detected", diagnostic=state[:200])
# EOF
