"""Sync channel data models."""
import time
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from treesync import settings


class Strategy(str, Enum):
    POLLING = "polling"
    EVENT_STREAM = "sse"
    WEBSOCKET = "websocket"  # reserved, no channel implementation yet


class ChannelState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"
    CLOSED = "closed"


class ChangeType(str, Enum):
    """Closed set of things a channel can receive."""

    SNAPSHOT = "snapshot"
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    KEEPALIVE = "keepalive"


def created_at_key(item: Dict[str, Any]) -> float:
    """Sort key for ``created_at`` in any of the shapes the server sends.

    Accepts epoch numbers, ``{"seconds": n}`` timestamps and ISO-8601
    strings. Missing or unparseable values sort as 0.
    """
    value = item.get("created_at")
    if isinstance(value, dict):
        value = value.get("seconds", 0)
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


@dataclass
class ChannelConfig:
    """Everything needed to build one channel."""

    channel_id: str
    strategy: Strategy
    endpoint: str
    filter: Optional[str] = None
    event_name: Optional[str] = None  # named stream event carrying this collection
    poll_interval: float = field(default_factory=lambda: settings.TREE_POLL_INTERVAL)
    reconnect_delay: float = field(default_factory=lambda: settings.RECONNECT_DELAY)
    max_reconnect_delay: float = field(default_factory=lambda: settings.MAX_RECONNECT_DELAY)
    max_reconnect_attempts: int = field(default_factory=lambda: settings.MAX_RECONNECT_ATTEMPTS)
    failure_threshold: int = field(default_factory=lambda: settings.POLL_FAILURE_THRESHOLD)
    sort_key: Callable[[Dict[str, Any]], Any] = created_at_key
    sort_descending: bool = True
    normalize: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None

    def __post_init__(self):
        self.strategy = Strategy(self.strategy)
        if self.event_name is None:
            self.event_name = self.channel_id.split(":")[-1]

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.channel_id, self.filter)

    @property
    def params(self) -> Dict[str, Any]:
        return {"status": self.filter} if self.filter else {}


@dataclass
class SyncEvent:
    """A change applied to a channel's collection."""

    type: ChangeType
    channel_id: str
    items: List[Dict[str, Any]]  # Copy of the collection after the change
    item: Optional[Dict[str, Any]] = None
    is_new: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ChannelError:
    """A problem reported by a channel."""

    code: str
    message: str
    recoverable: bool
    channel_id: str
    timestamp: float = field(default_factory=time.time)
