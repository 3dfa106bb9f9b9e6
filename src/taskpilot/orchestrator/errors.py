"""
src/taskpilot/orchestrator/errors.py

Terminal failures of an orchestration run, plus the executor's input error.
"""


from typing import Optional


class AssistantError(Exception):
    """Base class for errors that end an orchestration run."""

    error_type: str = "system"

    def __init__(self, message: str, *, diagnostic: Optional[str] = None):

        self.diagnostic = diagnostic
        super().__init__(message)


class ConversationLoopError(AssistantError):
    """The same conversation fingerprint was seen twice in one run."""

    error_type = "ai"


class ToolOscillationError(AssistantError):
    """A tool kept being proposed without the run converging."""

    error_type = "ai"


class MaxIterationsError(AssistantError):
    """The plan loop made progress each step but never produced an answer."""

    error_type = "ai"


class ModelInvocationError(AssistantError):
    """The model call failed, including the minimal-context retry."""

    error_type = "ai"


class AuthenticationError(AssistantError):

    error_type = "auth"


class ProviderError(Exception):
    """Raised by task / calendar collaborators when the external call fails."""

    def __init__(self, message: str, *, status: Optional[int] = None):

        self.status = status
        super().__init__(message)


class ToolInputError(ValueError):
    """Raised before dispatch when a tool's arguments are malformed."""

    def __init__(self, tool_name: str, message: str):

        self.tool_name = tool_name
        super().__init__(message)
# EOF
