"""
src/taskpilot/config.py

Enums, defaults and environment-driven settings for the assistant.
"""


import logging
import os
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ModelTier(str, Enum):

    DEFAULT = "default"
    FAST = "fast"


class StreamStatus(str, Enum):

    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


# Defaults
DEFAULT_MODEL: str = "gpt-4o-mini"
DEFAULT_FAST_MODEL: str = "gpt-4o-mini"
MAX_STEPS: int = 8                          # Plan-loop ceiling per user turn
MAX_HISTORY_MESSAGES: int = 50              # Turns kept when building model input

OSCILLATION_CEILING: int = 3                # Steps a single tool may appear in per run
FINGERPRINT_USER_CHARS: int = 24
FINGERPRINT_MESSAGE_CHARS: int = 120
FINGERPRINT_RECENT_ROLES: int = 3

BREAKER_FAILURE_THRESHOLD: int = 3
BREAKER_WINDOW_SECONDS: float = 5 * 60

STREAM_RETENTION_HOURS: float = 24
STREAM_PAGE_SIZE: int = 100
TEXT_DELTA_CHUNK_CHARS: int = 64

# Opaque provider ids: no whitespace, at least one digit. Rejects "Groceries".
ID_PATTERN = re.compile(r"^(?=.*\d)[A-Za-z0-9_-]{2,64}$")


class AssistantSettings(BaseModel):
    """Runtime settings, usually built from the environment."""

    openai_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    fast_model: str = DEFAULT_FAST_MODEL
    max_steps: int = Field(default=MAX_STEPS, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AssistantSettings":

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("TASKPILOT_MODEL", DEFAULT_MODEL),
            fast_model=os.getenv("TASKPILOT_FAST_MODEL", DEFAULT_FAST_MODEL),
            max_steps=int(os.getenv("TASKPILOT_MAX_STEPS", str(MAX_STEPS))),
            log_level=os.getenv("TASKPILOT_LOG_LEVEL", "INFO"),
        )

    def model_for(self, tier: ModelTier) -> str:

        return self.fast_model if tier == ModelTier.FAST else self.model


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging once for the CLI / demo app."""

    level = (level or os.getenv("TASKPILOT_LOG_LEVEL", "INFO")).upper()

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def truncate_id(value: Optional[str], limit: int = 20) -> str:
    """Shorten opaque identifiers for log lines."""

    if not value:
        return "-"

    return value if len(value) <= limit else f"{value[:limit]}..."
# EOF
