"""
src/taskpilot/tools/circuit_breaker.py

Per-tool failure counting. A tool that fails BREAKER_FAILURE_THRESHOLD times
within BREAKER_WINDOW_SECONDS of its last failure is short-circuited until the
window passes. The store is shared by every run in the process, so one
caller's flaky tool is paused for all callers.
"""


import functools
import logging
import time
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from taskpilot.config import BREAKER_FAILURE_THRESHOLD, BREAKER_WINDOW_SECONDS
from taskpilot.orchestrator.models import ToolErrorKind, ToolInvocation, ToolResult


logger = logging.getLogger(__name__)


CIRCUIT_OPEN_TEMPLATE = "The {tool} tool is temporarily unavailable due to repeated failures. Please try again later."

# Bad arguments (schema errors, names where ids belong) and unknown tools say
# nothing about the tool itself, and a short-circuit is not a new failure.
# Only failures raised by the tool's backend count toward the threshold.
_NOT_COUNTED = {ToolErrorKind.INVALID_INPUT, ToolErrorKind.UNKNOWN_TOOL, ToolErrorKind.CIRCUIT_OPEN}


class CircuitBreakerState(BaseModel):

    failure_count: int = 0
    last_failure_at: Optional[float] = None


class CircuitBreakerStore:

    def __init__(
        self,
        threshold: int = BREAKER_FAILURE_THRESHOLD,
        window_seconds: float = BREAKER_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):

        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self._states: Dict[str, CircuitBreakerState] = {}

    def state(self, tool_name: str) -> CircuitBreakerState:
        """Current state, with an expired window already folded back to zero."""

        st = self._states.setdefault(tool_name, CircuitBreakerState())

        if st.last_failure_at is not None and self._clock() - st.last_failure_at >= self.window_seconds:
            st.failure_count = 0
            st.last_failure_at = None

        return st

    def is_open(self, tool_name: str) -> bool:

        return self.state(tool_name).failure_count >= self.threshold

    def record_failure(self, tool_name: str) -> CircuitBreakerState:

        st = self.state(tool_name)
        st.failure_count += 1
        st.last_failure_at = self._clock()

        if st.failure_count == self.threshold:
            logger.warning("Circuit opened for %s after %d failures", tool_name, st.failure_count)

        return st

    def record_success(self, tool_name: str) -> None:

        self._states.pop(tool_name, None)

    def reset(self, tool_name: Optional[str] = None) -> None:

        if tool_name is None:
            self._states.clear()
        else:
            self._states.pop(tool_name, None)


def circuit_protected(dispatch):
    """
    Wrap an async `(self, invocation, ...) -> ToolResult` method with the
    breaker policy. The owner must expose a CircuitBreakerStore as `self.breakers`.
    - open breaker: return a circuit_open failure without calling `dispatch`
    - success: clear the tool's counter
    - failure (other than bad input / unknown tool): count it
    """

    @functools.wraps(dispatch)
    async def wrapper(self, invocation: ToolInvocation, *args, **kwargs) -> ToolResult:

        breakers: CircuitBreakerStore = self.breakers
        name = invocation.tool_name

        if breakers.is_open(name):
            logger.warning("Circuit open for %s; skipping call %s", name, invocation.tool_call_id)
            return ToolResult.failed(invocation, ToolErrorKind.CIRCUIT_OPEN, CIRCUIT_OPEN_TEMPLATE.format(tool=name))

        result = await dispatch(self, invocation, *args, **kwargs)

        if result.success:
            breakers.record_success(name)
        elif result.error is None or result.error.kind not in _NOT_COUNTED:
            breakers.record_failure(name)

        return result

    return wrapper
# EOF
