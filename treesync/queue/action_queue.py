"""JSON-file backed queue of mutations made while offline."""
import json
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from treesync import settings
from treesync.events import EventBus
from treesync.logging_conf import logger
from treesync.queue.models import ActionKind, QueuedAction


class ActionQueue:
    """Durable, ordered list of pending mutations.

    The whole queue is one JSON list stored under ``settings.QUEUE_KEY``.
    Every operation re-reads the file before mutating it and rewrites it
    atomically afterwards. If the file cannot be written the queue keeps
    working from memory for the rest of the session.
    """

    def __init__(self, path: Optional[Path] = None, max_retries: Optional[int] = None):
        self.path: Path = Path(path) if path else settings.QUEUE_FILE
        self.max_retries: int = max_retries if max_retries is not None else settings.MAX_RETRIES
        self._lock = threading.RLock()
        self._actions: List[QueuedAction] = []
        self._memory_only = False
        self._changes = EventBus("queue")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create queue directory {self.path.parent}: {e}; queue is memory-only")
            self._memory_only = True

    @property
    def memory_only(self) -> bool:
        return self._memory_only

    def on_change(self, handler: Callable[[int], None]) -> Callable[[], None]:
        """Subscribe to the pending count after every change."""
        return self._changes.subscribe(handler)

    def enqueue(self, kind: ActionKind, payload: Dict[str, Any]) -> str:
        """Append a new action and return its id."""
        action = QueuedAction.create(kind, payload)
        with self._lock:
            actions = self._load()
            actions.append(action)
            self._save(actions)
            size = len(actions)
        logger.info(f"Queued {action.kind.value} action {action.id} ({size} pending)")
        self._changes.emit(size)
        return action.id

    def dequeue(self, action_id: str) -> None:
        """Remove one action by id."""
        with self._lock:
            actions = [a for a in self._load() if a.id != action_id]
            self._save(actions)
            size = len(actions)
        self._changes.emit(size)

    def peek_all(self) -> List[QueuedAction]:
        """All pending actions, oldest first."""
        with self._lock:
            actions = self._load()
        # sorted() is stable, so equal timestamps keep enqueue order
        return sorted(actions, key=lambda a: a.enqueued_at)

    def get(self, action_id: str) -> Optional[QueuedAction]:
        with self._lock:
            for action in self._load():
                if action.id == action_id:
                    return action
        return None

    def increment_retry(self, action_id: str) -> bool:
        """Count a failed replay. Returns True to keep the action, False once it is dropped."""
        with self._lock:
            actions = self._load()
            action = next((a for a in actions if a.id == action_id), None)
            if action is None:
                return False

            action.retry_count += 1
            if action.retry_count >= self.max_retries:
                actions = [a for a in actions if a.id != action_id]
                self._save(actions)
                size = len(actions)
                keep = False
                logger.warning(
                    f"Dropping {action.kind.value} action {action_id} after {action.retry_count} failed attempts"
                )
            else:
                self._save(actions)
                size = len(actions)
                keep = True

        if not keep:
            self._changes.emit(size)
        return keep

    def clear(self) -> None:
        """Empty the queue. Only ever called on explicit user request."""
        with self._lock:
            self._save([])
        logger.info("Offline queue cleared")
        self._changes.emit(0)

    def size(self) -> int:
        with self._lock:
            return len(self._load())

    def _load(self) -> List[QueuedAction]:
        """Read the stored queue; missing or corrupt storage is an empty queue."""
        if self._memory_only:
            return list(self._actions)

        try:
            if not self.path.exists():
                self._actions = []
                return []
            with open(self.path, "r") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError(f"expected a list, got {type(raw).__name__}")
            actions = []
            for record in raw:
                try:
                    actions.append(QueuedAction.from_dict(record))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed queued action {record!r}: {e}")
            self._actions = actions
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read offline queue from {self.path}: {e}; treating as empty")
            self._actions = []
        return list(self._actions)

    def _save(self, actions: List[QueuedAction]) -> None:
        self._actions = list(actions)
        if self._memory_only:
            return

        tmp_path = self.path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump([a.to_dict() for a in actions], f)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            self._memory_only = True
            logger.warning(
                f"Failed to persist offline queue to {self.path}: {e}; "
                "continuing in memory for this session"
            )
