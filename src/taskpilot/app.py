"""
src/taskpilot/app.py

Local Gradio demo: chat with the assistant against the sample workspace and
inspect the stream it produced.
"""


import json
from typing import Any, Dict, Optional, Tuple

import gradio as gr

from taskpilot.config import AssistantSettings, configure_logging
from taskpilot.context.conversations import DEFAULT_SESSION, InMemoryConversationStore
from taskpilot.context.loader import Workspace, load_workspace
from taskpilot.orchestrator.errors import AssistantError
from taskpilot.orchestrator.llm_openai import ModelClient, OpenAIModelClient
from taskpilot.orchestrator.models import ModelFlags
from taskpilot.orchestrator.router import Orchestrator
from taskpilot.streaming.compat import StreamingBridge
from taskpilot.streaming.event_log import StreamEventLog
from taskpilot.streaming.legacy import LegacyStreamStore
from taskpilot.tools.calendar import WorkspaceCalendar
from taskpilot.tools.circuit_breaker import CircuitBreakerStore
from taskpilot.tools.executor import ToolExecutor
from taskpilot.tools.tasks import WorkspaceTaskStore


APP_TITLE = "Taskpilot (Local Demo)"
APP_DESC = (
    "Type requests like: "
    "'create a task to call the dentist tomorrow at 2pm' or 'what's on my Groceries list?'. "
    "Changes live in memory for this session only."
)


class Runtime:
    """Everything one app process shares: workspace, breakers, stream stores."""

    def __init__(self, ws: Workspace, settings: AssistantSettings, model: Optional[ModelClient] = None):

        self.ws = ws
        self.settings = settings
        self.event_log = StreamEventLog()
        self.legacy = LegacyStreamStore()
        self.bridge = StreamingBridge(self.event_log, self.legacy)
        self.conversations = InMemoryConversationStore()
        self.tasks = WorkspaceTaskStore(ws)
        self.executor = ToolExecutor(self.tasks, WorkspaceCalendar(ws), CircuitBreakerStore())
        self.orchestrator = Orchestrator(
            model or OpenAIModelClient(api_key=settings.openai_api_key),
            self.executor,
            self.conversations,
            bridge=self.bridge,
            settings=settings,
        )

    async def handle_command(self, command: str, fast: bool, session_id: str) -> Tuple[str, str]:
        """Run one turn; returns (answer markdown, stream JSON)."""

        command = (command or "").strip()

        if not command:
            return "Type a request first.", "{}"

        try:
            result = await self.orchestrator.chat_with_ai(
                command,
                session_id=session_id or DEFAULT_SESSION,
                model_flags=ModelFlags(use_fast_model=fast),
            )
        except AssistantError as e:
            active = self.event_log.get_active_streams(session_id or DEFAULT_SESSION)
            return f"**Error ({e.error_type})**: {e}", _dump({"active_streams": [s.model_dump(mode="json") for s in active]})

        return result.response, self.stream_json(result.stream_id)

    def stream_json(self, stream_id: Optional[str]) -> str:

        if not stream_id:
            return "{}"

        data = self.bridge.get_streaming_data_smart(stream_id)
        summary = self.event_log.get_stream_summary(stream_id)

        return _dump({
            "stream": data.model_dump(mode="json") if data else None,
            "summary": summary.model_dump(mode="json") if summary else None,
        })

    async def workspace_json(self) -> str:

        return _dump(await self.tasks.get_project_and_task_map())


def _dump(obj: Dict[str, Any]) -> str:

    return json.dumps(obj, indent=2, default=str)


def app(runtime: Optional[Runtime] = None):

    if runtime is None:
        settings = AssistantSettings.from_env()
        configure_logging(settings.log_level)
        runtime = Runtime(load_workspace(), settings)

    with gr.Blocks(title=APP_TITLE) as demo:
        gr.Markdown(f"# {APP_TITLE}")
        gr.Markdown(APP_DESC)

        with gr.Row():
            session_tb = gr.Textbox(label="Session", value=DEFAULT_SESSION, scale=1)
            fast_cb = gr.Checkbox(label="Fast model", value=False, info="Use the cheaper model tier.")

        with gr.Tab("Chat"):
            cmd = gr.Textbox(
                label="Message",
                placeholder="e.g., create a task to call the dentist tomorrow at 2pm",
                lines=2,
            )
            run = gr.Button("Send", variant="primary")
            answer = gr.Markdown()
            stream_out = gr.Code(label="Stream", language="json")

        with gr.Tab("Workspace"):
            refresh = gr.Button("Refresh")
            ws_out = gr.Code(label="Projects & tasks", language="json")

        run.click(
            fn=runtime.handle_command,
            inputs=[cmd, fast_cb, session_tb],
            outputs=[answer, stream_out],
        )
        refresh.click(fn=runtime.workspace_json, inputs=[], outputs=[ws_out])

    return demo


if __name__ == "__main__":

    app().launch()

# EOF
