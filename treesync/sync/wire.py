"""Text event stream framing and payload parsing.

Raw stream lines are grouped into ``(event_name, data)`` frames by
``iter_sse``. ``parse_stream_event`` turns one frame into a ``StreamEvent``
whose ``type`` is a closed ``ChangeType``; everything past this module
switches on that variant instead of on wire strings.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from treesync.errors import MalformedEventError
from treesync.sync.models import ChangeType

DEFAULT_EVENT = "message"
KEEPALIVE_EVENTS = {"ping", "connected", "keepalive"}

_CHANGE_TYPES = {
    "added": ChangeType.ADDED,
    "modified": ChangeType.MODIFIED,
    "removed": ChangeType.REMOVED,
    "initial": ChangeType.SNAPSHOT,
}


@dataclass
class StreamEvent:
    type: ChangeType
    items: Optional[List[Dict[str, Any]]] = None  # SNAPSHOT only
    item: Optional[Dict[str, Any]] = None  # ADDED / MODIFIED / REMOVED
    collection: Optional[str] = None


def iter_sse(lines: Iterable[str]) -> Iterator[Tuple[str, str]]:
    """Group stream lines into ``(event_name, data)`` frames."""
    event_name = DEFAULT_EVENT
    data_lines: List[str] = []

    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        line = raw.rstrip("\r\n")

        if not line:
            if data_lines:
                yield event_name, "\n".join(data_lines)
            event_name = DEFAULT_EVENT
            data_lines = []
            continue

        if line.startswith(":"):
            continue  # comment

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event_name = value or DEFAULT_EVENT
        elif name == "data":
            data_lines.append(value)
        # id and retry fields are not used

    if data_lines:
        yield event_name, "\n".join(data_lines)


def parse_stream_event(event_name: str, data: str) -> StreamEvent:
    """Turn one frame into a StreamEvent; raises MalformedEventError."""
    if event_name in KEEPALIVE_EVENTS:
        return StreamEvent(ChangeType.KEEPALIVE)

    try:
        payload = json.loads(data)
    except ValueError as e:
        raise MalformedEventError(f"Invalid JSON in '{event_name}' event: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedEventError(f"Expected an object in '{event_name}' event, got {type(payload).__name__}")

    collection = payload.get("collection")

    if "items" in payload:
        items = payload["items"] if payload["items"] is not None else []
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise MalformedEventError(f"Snapshot 'items' must be a list of objects in '{event_name}' event")
        return StreamEvent(ChangeType.SNAPSHOT, items=items, collection=collection)

    change = _CHANGE_TYPES.get(payload.get("type"))
    item = payload.get("item")
    if change is None or not isinstance(item, dict):
        raise MalformedEventError(f"Unrecognized '{event_name}' event payload: {data[:200]}")

    if change is ChangeType.SNAPSHOT:
        return StreamEvent(ChangeType.SNAPSHOT, items=[item], collection=collection)
    return StreamEvent(change, item=item, collection=collection)
