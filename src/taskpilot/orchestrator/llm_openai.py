"""
src/taskpilot/orchestrator/llm_openai.py

OpenAI client wrapper for function calling.
- OpenAIModelClient.generate(): one completion, tool calls returned not executed
- to_openai_messages(): neutral normalized messages -> Chat Completions format
- extract_tool_calls(): tool calls from a response choice as ToolInvocations
"""


import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

from taskpilot.orchestrator.errors import AuthenticationError
from taskpilot.orchestrator.models import ModelResponse, ToolInvocation


logger = logging.getLogger(__name__)


class ModelClient(Protocol):

    async def generate(
        self,
        model: str,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        max_steps: int,
    ) -> ModelResponse:
        ...


def to_openai_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convert normalized messages into Chat Completions messages.
    Raises ValueError on anything the API would reject, including a tool
    message whose id was not declared by the assistant message before it.
    """

    out: List[Dict[str, Any]] = []
    open_calls: set = set()

    for m in messages:
        role = m.get("role")

        if role == "user":
            if not isinstance(m.get("content"), str):
                raise ValueError("user message content must be a string")
            out.append({"role": "user", "content": m["content"]})
            open_calls = set()

        elif role == "assistant":
            msg: Dict[str, Any] = {"role": "assistant", "content": m.get("content") or None}
            calls = m.get("tool_calls") or []
            open_calls = {c["id"] for c in calls}
            if calls:
                msg["tool_calls"] = [
                    {
                        "id": c["id"],
                        "type": "function",
                        "function": {"name": c["name"], "arguments": json.dumps(c.get("args") or {}, ensure_ascii=False)},
                    }
                    for c in calls
                ]
            elif msg["content"] is None:
                raise ValueError("assistant message has neither content nor tool calls")
            out.append(msg)

        elif role == "tool":
            call_id = m.get("tool_call_id")
            if call_id not in open_calls:
                raise ValueError(f"tool result {call_id} does not answer a preceding tool call")
            content = m.get("content")
            out.append({
                "role": "tool",
                "tool_call_id": call_id,
                "content": content if isinstance(content, str) else json.dumps(content, ensure_ascii=False, default=str),
            })

        else:
            raise ValueError(f"unsupported role: {role!r}")

    return out


def extract_tool_calls(choice) -> List[ToolInvocation]:
    """
    Normalize tool calls from the OpenAI response choice.
    """

    out = []
    tcs = getattr(choice.message, "tool_calls", None)

    if not tcs:
        return out

    for tc in tcs:
        if tc.type == "function" and tc.function:
            try:
                args = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("Unparseable arguments for %s; passing empty input", tc.function.name)
                args = {}
            if not isinstance(args, dict):
                args = {}
            out.append(ToolInvocation(tool_name=tc.function.name, tool_call_id=tc.id, input=args))

    return out


class OpenAIModelClient:
    """ModelClient over the async OpenAI SDK."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None, temperature: float = 0.2):

        self.client = client or AsyncOpenAI(api_key=api_key)
        self.temperature = temperature

    async def generate(
        self,
        model: str,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        max_steps: int,
    ) -> ModelResponse:
        """
        One completion. `max_steps` is the caller's loop budget; a single
        call here is always a single step.
        """

        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "temperature": self.temperature,
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        try:
            resp = await self.client.chat.completions.create(**kwargs)
        except openai.AuthenticationError as e:
            raise AuthenticationError("Model provider rejected the API key", diagnostic=str(e)) from e

        choice = resp.choices[0]

        return ModelResponse(text=choice.message.content or "", tool_calls=extract_tool_calls(choice))
# EOF
