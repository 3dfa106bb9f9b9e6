"""
src/taskpilot/orchestrator/router.py

Orchestrator: runs the bounded plan loop for one user message.

    Start -> Plan -> (tool calls -> execute -> Plan)* -> Finished | Failed

Each Plan step: fingerprint + loop check, normalize history, ask the model.
No tool calls ends the run with the model's text. Tool calls are checked for
oscillation, executed concurrently, reconciled against this step's call ids
and folded back into history, which is checkpointed before the next step.
A run that never answers within `max_steps` fails with MaxIterationsError.
"""


import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from taskpilot.config import TEXT_DELTA_CHUNK_CHARS, AssistantSettings, ModelTier, truncate_id
from taskpilot.context.conversations import DEFAULT_SESSION, ConversationStore
from taskpilot.orchestrator import prompts
from taskpilot.orchestrator.errors import AssistantError, AuthenticationError, MaxIterationsError, ModelInvocationError
from taskpilot.orchestrator.llm_openai import ModelClient
from taskpilot.orchestrator.loop_guard import LoopGuard, build_fingerprint
from taskpilot.orchestrator.models import (
    ChatResponse,
    ModelFlags,
    ModelResponse,
    ToolInvocation,
    ToolResult,
    assistant_turn,
    tool_turn,
    user_turn,
)
from taskpilot.orchestrator.normalizer import fallback_messages, normalize_history, optimize_history, sanitize_history
from taskpilot.streaming.compat import StreamingBridge
from taskpilot.tools.executor import ToolExecutor
from taskpilot.tools.registry import to_openai_tools


logger = logging.getLogger(__name__)


class IdentityResolver(Protocol):

    async def resolve_user_id(self) -> str:
        ...


class StaticIdentity:
    """Single-user identity for the local app and tests."""

    def __init__(self, user_id: str = "local-user"):

        self.user_id = user_id

    async def resolve_user_id(self) -> str:

        if not self.user_id:
            raise AuthenticationError("Authentication required")

        return self.user_id


def reconcile_results(calls: List[ToolInvocation], results: List[ToolResult]) -> List[ToolResult]:
    """Keep one result per call proposed in this step, in call order; drop the rest."""

    by_id: Dict[str, ToolResult] = {}
    wanted = {c.tool_call_id for c in calls}

    for r in results:
        if r.tool_call_id not in wanted:
            logger.warning("Dropping result %s (%s): no matching call in this step", r.tool_call_id, r.tool_name)
            continue
        by_id.setdefault(r.tool_call_id, r)

    return [by_id[c.tool_call_id] for c in calls if c.tool_call_id in by_id]


def chunk_text(text: str, size: int = TEXT_DELTA_CHUNK_CHARS) -> List[str]:

    return [text[i:i + size] for i in range(0, len(text), size)] or [""]


class Orchestrator:

    def __init__(
        self,
        model: ModelClient,
        executor: ToolExecutor,
        conversations: ConversationStore,
        *,
        identity: Optional[IdentityResolver] = None,
        bridge: Optional[StreamingBridge] = None,
        settings: Optional[AssistantSettings] = None,
        stream_id_factory: Optional[Callable[[], str]] = None,
    ):

        self.model = model
        self.executor = executor
        self.conversations = conversations
        self.identity = identity or StaticIdentity()
        self.bridge = bridge
        self.settings = settings or AssistantSettings()
        self.stream_id_factory = stream_id_factory or (lambda: f"stream-{uuid.uuid4().hex[:12]}")
        self.tools = to_openai_tools()

    async def chat_with_ai(
        self,
        message: str,
        session_id: Optional[str] = None,
        model_flags: Optional[Union[ModelFlags, Dict[str, Any]]] = None,
    ) -> ChatResponse:
        """
        Run one user turn to Finished (returned) or Failed (raised AssistantError).
        Any other exception also closes the stream, as a "system" error, before it propagates.
        """

        session_id = session_id or DEFAULT_SESSION
        flags = model_flags if isinstance(model_flags, ModelFlags) else ModelFlags.model_validate(model_flags or {})
        tier = ModelTier.FAST if flags.use_fast_model else ModelTier.DEFAULT
        model_name = flags.model or self.settings.model_for(tier)
        system_prompt = prompts.system_prompt(tier)

        # --- Start -------------------------------------------------------------
        user_id = await self.identity.resolve_user_id()
        history = await self.conversations.get_conversation(session_id)
        run_start = len(history)
        history.append(user_turn(message))
        guard = LoopGuard()
        stream_id = self._open_stream(message, session_id, model_name)

        logger.info("Run started for user %s in session %s (model %s)", truncate_id(user_id), session_id, model_name)

        prior_tools: List[str] = []
        call_log: List[Dict[str, Any]] = []
        result_log: List[Dict[str, Any]] = []

        try:
            for step in range(1, self.settings.max_steps + 1):

                # --- Plan ------------------------------------------------------
                guard.check_and_record(build_fingerprint(
                    user_id,
                    message,
                    len(history),
                    [t.get("role", "") for t in history if isinstance(t, dict)],
                    prior_tools,
                ))
                messages = normalize_history(optimize_history(sanitize_history(history)), message)
                response = await self._generate(model_name, system_prompt, messages, message)

                if not response.tool_calls:
                    text = response.text.strip() or "(no content)"
                    history.append(assistant_turn(text))
                    await self.conversations.upsert_conversation(session_id, history)
                    self._publish_answer(stream_id, text, call_log, result_log)
                    logger.info("Run finished in %d step(s), %d tool call(s)", step, len(call_log))

                    return ChatResponse(
                        response=text,
                        stream_id=stream_id,
                        steps=step,
                        tool_calls=len(call_log),
                        tool_results=len(result_log),
                    )

                # --- Tool calls ------------------------------------------------
                calls = response.tool_calls
                guard.record_tool_calls([c.tool_name for c in calls])
                history.append(assistant_turn(response.text, calls))

                for c in calls:
                    call_log.append({"tool_name": c.tool_name, "tool_call_id": c.tool_call_id, "input": dict(c.input)})
                    if self.bridge and stream_id:
                        self.bridge.update_streaming_tool_call_hybrid(stream_id, c.tool_name, c.tool_call_id, dict(c.input))

                results = await asyncio.gather(*(self.executor.execute(c) for c in calls))
                valid = reconcile_results(calls, list(results))

                for r in valid:
                    history.append(tool_turn([r]))
                    result_log.append({"tool_name": r.tool_name, "tool_call_id": r.tool_call_id, "success": r.success})
                    if self.bridge and stream_id:
                        self.bridge.update_streaming_tool_result_hybrid(
                            stream_id,
                            r.tool_name,
                            r.tool_call_id,
                            r.output,
                            success=r.success,
                            error=r.error.message if r.error else None,
                        )

                await self.conversations.upsert_conversation(session_id, history)
                prior_tools = [c.tool_name for c in calls]

            raise MaxIterationsError("maximum iterations reached", diagnostic=f"steps={self.settings.max_steps} tool_calls={len(call_log)}")

        except AssistantError as e:
            logger.error("Run failed for user %s: %s (%s)", truncate_id(user_id), e, e.diagnostic or "-")
            await self.conversations.upsert_conversation(session_id, _without_run_text(history, run_start))
            if self.bridge and stream_id:
                self.bridge.error_streaming_hybrid(stream_id, str(e), error_type=e.error_type)
            raise

        except Exception as e:
            logger.exception("Run crashed for user %s: %s", truncate_id(user_id), e)
            await self.conversations.upsert_conversation(session_id, _without_run_text(history, run_start))
            if self.bridge and stream_id:
                self.bridge.error_streaming_hybrid(stream_id, str(e) or type(e).__name__, error_type="system")
            raise

    # --- Internal --------------------------------------------------------------
    async def _generate(self, model_name: str, system_prompt: str, messages: List[Dict[str, Any]], live_message: str) -> ModelResponse:
        """One model call, retried once with just the live message."""

        try:
            return await self.model.generate(model_name, system_prompt, messages, self.tools, self.settings.max_steps)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.warning("Model call failed, retrying with minimal context: %s", e)

        try:
            return await self.model.generate(model_name, system_prompt, fallback_messages(live_message), self.tools, self.settings.max_steps)
        except AuthenticationError:
            raise
        except Exception as e:
            raise ModelInvocationError("model invocation failed", diagnostic=str(e)[:200]) from e

    def _open_stream(self, message: str, session_id: str, model_name: str) -> Optional[str]:

        if self.bridge is None:
            return None

        stream_id = self.stream_id_factory()
        self.bridge.start_streaming_hybrid(stream_id, message, session_id=session_id, model_name=model_name)

        return stream_id

    def _publish_answer(self, stream_id: Optional[str], text: str, call_log: List[Dict[str, Any]], result_log: List[Dict[str, Any]]) -> None:

        if self.bridge is None or stream_id is None:
            return

        accumulated = ""

        for piece in chunk_text(text):
            accumulated += piece
            self.bridge.update_streaming_text_hybrid(stream_id, piece, accumulated)

        self.bridge.finish_streaming_hybrid(
            stream_id,
            text,
            tool_calls=call_log or None,
            tool_results=result_log or None,
        )


def _without_run_text(history: List[Dict[str, Any]], run_start: int) -> List[Dict[str, Any]]:
    """History to keep after a failed run: earlier turns as-is, this run's turns minus assistant text."""

    kept = list(history[:run_start])

    for turn in history[run_start:]:
        if not isinstance(turn, dict) or turn.get("role") != "assistant":
            kept.append(turn)
        elif turn.get("tool_calls"):
            kept.append({**turn, "content": ""})

    return kept
# EOF
