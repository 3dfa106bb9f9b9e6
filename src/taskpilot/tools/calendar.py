"""
src/taskpilot/tools/calendar.py - calendar & clock collaborators

- Calendar: the async interface for event CRUD keyed by provider event id,
  plus a plain text search over title, description and location
- WorkspaceCalendar: an implementation over Workspace.events
- current_time(): the clock behind the getCurrentTime tool

Date/time arguments are ISO-8601 or provider-native strings ("tomorrow 9am")
and are stored exactly as given.
"""


from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskpilot.context.loader import Workspace
from taskpilot.context import selectors
from taskpilot.orchestrator.errors import ProviderError
from taskpilot.tools.tasks import _next_id


logger = logging.getLogger(__name__)


class Calendar(Protocol):

    async def create_event(self, **fields: Any) -> Dict[str, Any]: ...
    async def list_events(self, time_min: Optional[str] = None, time_max: Optional[str] = None, max_results: int = 10) -> List[Dict[str, Any]]: ...
    async def update_event(self, event_id: str, **fields: Any) -> Dict[str, Any]: ...
    async def delete_event(self, event_id: str) -> Dict[str, Any]: ...
    async def search_events(self, query: str, time_min: Optional[str] = None, time_max: Optional[str] = None, max_results: int = 20) -> List[Dict[str, Any]]: ...


_EVENT_FIELDS = {"summary", "start", "end", "description", "location", "time_zone"}
_SEARCH_FIELDS = ("summary", "description", "location")


def _parse_when(value: Optional[str]) -> Optional[datetime]:
    """Internal: ISO-8601 to an aware datetime, None for natural-language strings."""

    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class WorkspaceCalendar:

    def __init__(self, ws: Workspace):

        self.ws = ws
        self.calls = 0

    def _require_connection(self) -> None:

        self.calls += 1

        if not self.ws.connections.get("calendar", True):
            raise ProviderError("Calendar not connected")

    def _require_event(self, event_id: str) -> Dict[str, Any]:

        event = selectors.get_event_by_id(self.ws, event_id)

        if event is None:
            raise ProviderError(f"Event not found: {event_id}", status=404)

        return event

    async def create_event(self, **fields: Any) -> Dict[str, Any]:

        self._require_connection()

        if not (fields.get("summary") or "").strip():
            raise ProviderError("Event summary must not be empty", status=400)

        event = {"id": _next_id(self.ws.events, "e")}
        event.update({k: v for k, v in fields.items() if k in _EVENT_FIELDS and v is not None})
        self.ws.events.append(event)
        logger.info("Created calendar event %s", event["id"])

        return dict(event)

    def _window(self, time_min: Optional[str], time_max: Optional[str]) -> List[Dict[str, Any]]:
        """
        Internal: events in the window, earliest first.
        Events whose start is not ISO-8601 are always included and sort last.
        """

        lo, hi = _parse_when(time_min), _parse_when(time_max)
        out = []

        for event in self.ws.events:
            start = _parse_when(event.get("start"))
            if start is not None:
                if lo is not None and start < lo:
                    continue
                if hi is not None and start > hi:
                    continue
            out.append(event)

        far = datetime.max.replace(tzinfo=timezone.utc)
        out.sort(key=lambda e: _parse_when(e.get("start")) or far)

        return out

    async def list_events(self, time_min: Optional[str] = None, time_max: Optional[str] = None, max_results: int = 10) -> List[Dict[str, Any]]:

        self._require_connection()

        return [dict(e) for e in self._window(time_min, time_max)[:max_results]]

    async def search_events(self, query: str, time_min: Optional[str] = None, time_max: Optional[str] = None, max_results: int = 20) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on title, description and location."""

        self._require_connection()

        needle = query.strip().lower()

        if not needle:
            raise ProviderError("Search query must not be empty", status=400)

        hits = [
            e for e in self._window(time_min, time_max)
            if any(needle in str(e.get(f) or "").lower() for f in _SEARCH_FIELDS)
        ]

        return [dict(e) for e in hits[:max_results]]

    async def update_event(self, event_id: str, **fields: Any) -> Dict[str, Any]:

        self._require_connection()
        event = self._require_event(event_id)

        for key, value in fields.items():
            if key in _EVENT_FIELDS and value is not None:
                event[key] = value

        return dict(event)

    async def delete_event(self, event_id: str) -> Dict[str, Any]:

        self._require_connection()
        event = self._require_event(event_id)
        self.ws.events.remove(event)

        return {"id": event_id, "summary": event.get("summary", ""), "deleted": True}


def current_time(time_zone: Optional[str] = None) -> Dict[str, Any]:
    """Current wall-clock time, in `time_zone` when it is a known IANA name."""

    tz = timezone.utc

    if time_zone:
        try:
            tz = ZoneInfo(time_zone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ProviderError(f"Unknown time zone: {time_zone}", status=400)

    now = datetime.now(tz)

    return {
        "iso": now.isoformat(timespec="seconds"),
        "date": now.date().isoformat(),
        "weekday": now.strftime("%A"),
        "time_zone": time_zone or "UTC",
    }
# EOF
