"""Progress events: polling store, server-sent-event framing, day splitting."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from workflows.state import ProgressEvent

# Heading that opens a day section in streamed itinerary markup.
_DAY_OPEN = re.compile(r"<h[1-3][^>]*>[^<]*?\bDay\s+(\d+)\b", re.IGNORECASE)


def format_sse(event: str, data: Any) -> str:
    """Frame one server-sent event: ``event: <type>\\ndata: <json>\\n\\n``."""
    payload = json.dumps(jsonable_encoder(data), ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


class ProgressTracker:
    """In-memory map of request id -> ordered progress events of that run."""

    def __init__(self, max_runs: int = 500) -> None:
        self.max_runs = max_runs
        self._events: Dict[str, List[ProgressEvent]] = {}

    def record(self, request_id: str, event: ProgressEvent) -> None:
        if request_id not in self._events and len(self._events) >= self.max_runs:
            # Oldest run first; dicts keep insertion order.
            self._events.pop(next(iter(self._events)))
        self._events.setdefault(request_id, []).append(event)

    def latest(self, request_id: str) -> Optional[ProgressEvent]:
        events = self._events.get(request_id)
        return events[-1] if events else None

    def history(self, request_id: str) -> List[ProgressEvent]:
        return list(self._events.get(request_id, []))

    def discard(self, request_id: str) -> None:
        self._events.pop(request_id, None)


class DaySplitter:
    """Turn streamed itinerary tokens into one chunk per finished day.

    A day is finished when the next day's heading arrives, or when the stream
    ends (:meth:`flush`).
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._emitted = 0

    def feed(self, token: str) -> List[Dict[str, Any]]:
        self._buffer += token
        finished: List[Dict[str, Any]] = []
        while True:
            headings = list(_DAY_OPEN.finditer(self._buffer))
            if len(headings) < 2:
                break
            first, second = headings[0], headings[1]
            finished.append(self._chunk(int(first.group(1)), self._buffer[first.start() : second.start()]))
            self._buffer = self._buffer[second.start() :]
        return finished

    def flush(self) -> List[Dict[str, Any]]:
        heading = _DAY_OPEN.search(self._buffer)
        if heading is None:
            return []
        chunk = self._chunk(int(heading.group(1)), self._buffer[heading.start() :])
        self._buffer = ""
        return [chunk]

    def reset(self) -> None:
        """Drop buffered text of an abandoned stream; emitted days stay counted."""
        self._buffer = ""

    def _chunk(self, day: int, content: str) -> Dict[str, Any]:
        self._emitted += 1
        return {"day": day, "content": content.strip()}

    @property
    def days_emitted(self) -> int:
        return self._emitted


__all__ = ["DaySplitter", "ProgressTracker", "format_sse"]
