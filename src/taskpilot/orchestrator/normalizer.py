"""
src/taskpilot/orchestrator/normalizer.py - stored history -> model messages

normalize_history() never raises. Stored turns can be malformed (missing role,
non-string content, tool results with no call, tools that no longer exist);
bad turns are skipped with a warning, and if the final formatting step still
fails the model sees only the live user message.

Pairing rule: an assistant tool call is sent to the model only together with
its result from a *later* tool turn. Calls with no later result are dropped.
"""


import logging
import re
from typing import Any, Dict, List, Tuple

from taskpilot.config import MAX_HISTORY_MESSAGES
from taskpilot.orchestrator.llm_openai import to_openai_messages


logger = logging.getLogger(__name__)


_TAG_RE = re.compile(r"<[^>]*>")


def fallback_messages(live_message: str) -> List[Dict[str, Any]]:

    return [{"role": "user", "content": live_message}]


def _later_results(history: List[Any]) -> Dict[str, Tuple[int, Dict[str, Any]]]:
    """Internal: tool_call_id -> (turn index, result) for every well-formed tool result."""

    found: Dict[str, Tuple[int, Dict[str, Any]]] = {}

    for idx, turn in enumerate(history):
        if not isinstance(turn, dict) or turn.get("role") != "tool":
            continue
        results = turn.get("tool_results")
        for result in results if isinstance(results, list) else []:
            if isinstance(result, dict) and isinstance(result.get("tool_call_id"), str):
                found.setdefault(result["tool_call_id"], (idx, result))

    return found


def _convert(history: List[Any]) -> List[Dict[str, Any]]:
    """Internal: steps 1-4, turn by turn, into neutral messages."""

    results = _later_results(history)
    paired: set = set()
    out: List[Dict[str, Any]] = []

    for idx, turn in enumerate(history):
        try:
            if not isinstance(turn, dict):
                logger.warning("Skipping history entry %d: not a mapping", idx)
                continue

            role = turn.get("role")

            if role == "user":
                content = turn.get("content")
                if not isinstance(content, str):
                    logger.warning("Skipping user turn %d: non-string content", idx)
                elif content.strip():
                    out.append({"role": "user", "content": content.strip()})

            elif role == "assistant":
                content = turn.get("content")
                text = content.strip() if isinstance(content, str) else ""
                calls, replies = [], []

                for call in turn.get("tool_calls") or []:
                    if not isinstance(call, dict) or not call.get("tool_call_id") or not call.get("name"):
                        continue
                    call_id = call["tool_call_id"]
                    match = results.get(call_id)
                    if match is None or match[0] <= idx or call_id in paired:
                        logger.debug("Dropping unpaired tool call %s (%s)", call_id, call.get("name"))
                        continue
                    paired.add(call_id)
                    calls.append({"id": call_id, "name": call["name"], "args": call.get("args") or {}})
                    replies.append({"role": "tool", "tool_call_id": call_id, "content": match[1].get("output")})

                if calls:
                    out.append({"role": "assistant", "content": text or None, "tool_calls": calls})
                    out.extend(replies)
                elif text:
                    out.append({"role": "assistant", "content": text})
                elif content is not None and not isinstance(content, str):
                    logger.warning("Skipping assistant turn %d: non-string content and no paired tool calls", idx)

            elif role == "tool":
                ids = [r.get("tool_call_id") for r in turn.get("tool_results") or [] if isinstance(r, dict)]
                orphans = [i for i in ids if i not in paired]
                if orphans:
                    logger.warning("Skipping %d orphaned tool result(s) in turn %d", len(orphans), idx)

            else:
                logger.warning("Skipping history entry %d: unknown role %r", idx, role)

        except Exception as e:
            logger.warning("Skipping history entry %d: %s", idx, e)

    return out


def normalize_history(history: List[Any], live_message: str) -> List[Dict[str, Any]]:
    """Build Chat Completions messages from stored turns; see module docstring."""

    try:
        messages = _convert(list(history or []))
    except Exception as e:
        logger.warning("History conversion failed, using live message only: %s", e)
        return fallback_messages(live_message)

    if not messages:
        return fallback_messages(live_message)

    try:
        return to_openai_messages(messages)
    except Exception as e:
        logger.warning("Model message formatting failed, using live message only: %s", e)
        return fallback_messages(live_message)


def sanitize_history(history: List[Any]) -> List[Dict[str, Any]]:
    """Strip markup from text, drop malformed calls/results and turns left empty."""

    out = []

    for turn in history or []:
        if not isinstance(turn, dict):
            continue

        clean = dict(turn)
        content = turn.get("content")
        clean["content"] = _TAG_RE.sub("", content).strip() if isinstance(content, str) else ""

        if "tool_calls" in turn:
            raw = turn["tool_calls"]
            clean["tool_calls"] = [
                c for c in (raw if isinstance(raw, list) else [])
                if isinstance(c, dict) and c.get("tool_call_id") and c.get("name")
            ]
        if "tool_results" in turn:
            raw = turn["tool_results"]
            clean["tool_results"] = [
                r for r in (raw if isinstance(raw, list) else [])
                if isinstance(r, dict) and r.get("tool_call_id") and r.get("output") is not None
            ]

        if clean["content"] or clean.get("tool_calls") or clean.get("tool_results"):
            out.append(clean)

    return out


def optimize_history(history: List[Dict[str, Any]], max_messages: int = MAX_HISTORY_MESSAGES) -> List[Dict[str, Any]]:
    """Keep the most recent `max_messages` turns."""

    if len(history) <= max_messages:
        return history

    return history[-max_messages:]


def conversation_stats(history: List[Dict[str, Any]]) -> Dict[str, Any]:

    history = [t for t in history if isinstance(t, dict)]
    users = sum(1 for t in history if t.get("role") == "user")
    assistants = sum(1 for t in history if t.get("role") == "assistant")
    tool_calls = sum(len(t["tool_calls"]) for t in history if t.get("role") == "assistant" and isinstance(t.get("tool_calls"), list))

    return {"total": len(history), "user_messages": users, "assistant_messages": assistants, "tool_calls": tool_calls}
# EOF
