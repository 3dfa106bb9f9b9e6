"""
src/taskpilot/streaming/errors.py
"""


class StreamError(Exception):
    """Base class for event-log and legacy-document failures."""

    def __init__(self, stream_id: str, message: str):

        self.stream_id = stream_id
        super().__init__(message)


class StreamAlreadyStartedError(StreamError):

    def __init__(self, stream_id: str):

        super().__init__(stream_id, f"Stream {stream_id} already started")


class StreamNotFoundError(StreamError):

    def __init__(self, stream_id: str):

        super().__init__(stream_id, f"Stream {stream_id} not found - must start stream first")


class LegacyStreamNotFoundError(StreamError):

    def __init__(self, stream_id: str):

        super().__init__(stream_id, f"Legacy stream {stream_id} not found")
# EOF
