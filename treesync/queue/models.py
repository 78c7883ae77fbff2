"""Queue data models."""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any


class ActionKind(str, Enum):
    """Mutation kinds that can wait in the offline queue."""

    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    SUGGESTION = "suggestion"


@dataclass
class QueuedAction:
    """A local mutation waiting to be replayed against the server."""

    id: str
    kind: ActionKind
    payload: Dict[str, Any]  # Interpreted only by the replay handler for `kind`
    enqueued_at: int  # Epoch milliseconds, replay order key
    retry_count: int = 0

    @classmethod
    def create(cls, kind: ActionKind, payload: Dict[str, Any]):
        """Factory method to create a QueuedAction with a fresh id."""
        now_ms = int(time.time() * 1000)
        return cls(
            id=f"{now_ms}-{uuid.uuid4().hex[:9]}",
            kind=ActionKind(kind),
            payload=payload,
            enqueued_at=now_ms,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "payload": self.payload,
            "timestamp": self.enqueued_at,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Rebuild an action from its stored form; raises on malformed records."""
        return cls(
            id=str(data["id"]),
            kind=ActionKind(data["type"]),
            payload=data.get("payload"),
            enqueued_at=int(data["timestamp"]),
            retry_count=int(data.get("retryCount", 0)),
        )


@dataclass
class ReplayResult:
    """Counts from one processor run."""

    synced: int = 0
    failed: int = 0
    dropped_ids: list = field(default_factory=list)
