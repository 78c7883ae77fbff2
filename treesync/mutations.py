"""Apply mutations directly when possible, queue them otherwise."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from treesync.connectivity import ConnectivityMonitor
from treesync.errors import ApiError
from treesync.handlers import build_replay_handlers
from treesync.logging_conf import logger
from treesync.queue.action_queue import ActionQueue
from treesync.queue.models import ActionKind


@dataclass
class MutationOutcome:
    applied: bool
    queued_id: Optional[str] = None
    result: Any = None


class MutationService:
    """Front door for tree edits made by the consumer."""

    def __init__(self, client, queue: ActionQueue, connectivity: ConnectivityMonitor):
        self.client = client
        self.queue = queue
        self.connectivity = connectivity

    def add_person(self, person: Dict[str, Any], parent_id: Optional[str] = None) -> MutationOutcome:
        payload = {"person": person}
        if parent_id:
            payload["parent_id"] = parent_id
        return self._submit(ActionKind.ADD, payload, lambda: self.client.create_person(person, parent_id))

    def edit_person(self, person_id: str, updates: Dict[str, Any]) -> MutationOutcome:
        payload = {"id": person_id, "updates": updates}
        return self._submit(ActionKind.EDIT, payload, lambda: self.client.update_person(person_id, updates))

    def delete_person(self, person_id: str) -> MutationOutcome:
        return self._submit(ActionKind.DELETE, {"id": person_id}, lambda: self.client.delete_person(person_id))

    def suggest(self, suggestion: Dict[str, Any]) -> MutationOutcome:
        return self._submit(ActionKind.SUGGESTION, suggestion, lambda: self.client.create_suggestion(suggestion))

    @property
    def handlers(self):
        return build_replay_handlers(self.client)

    def _submit(self, kind: ActionKind, payload: Dict[str, Any], call) -> MutationOutcome:
        if not self.connectivity.is_online():
            return MutationOutcome(applied=False, queued_id=self.queue.enqueue(kind, payload))

        try:
            result = call()
        except ApiError as e:
            if not e.retryable:
                raise
            logger.warning(f"{kind.value} failed ({e}); queued for later")
            return MutationOutcome(applied=False, queued_id=self.queue.enqueue(kind, payload))

        return MutationOutcome(applied=True, result=result)
