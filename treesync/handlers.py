"""Replay handlers: the direct API call behind each queued action kind."""
from typing import Any, Callable, Dict

from treesync.queue.models import ActionKind


def build_replay_handlers(client) -> Dict[ActionKind, Callable[[Dict[str, Any]], bool]]:
    """Map each action kind to a call on ``client``.

    Payload shapes (as produced by ``MutationService``):
        ADD:        {"person": {...}, "parent_id": optional str}
        EDIT:       {"id": str, "updates": {...}}
        DELETE:     {"id": str}
        SUGGESTION: the suggestion body as sent to the API
    A handler returns True once the call went through. The client raises
    ``ApiError`` on every failure; the processor counts that as a failed attempt.
    """

    def add(payload):
        client.create_person(payload["person"], payload.get("parent_id"))
        return True

    def edit(payload):
        client.update_person(payload["id"], payload["updates"])
        return True

    def delete(payload):
        client.delete_person(payload["id"])
        return True

    def suggestion(payload):
        client.create_suggestion(payload)
        return True

    return {
        ActionKind.ADD: add,
        ActionKind.EDIT: edit,
        ActionKind.DELETE: delete,
        ActionKind.SUGGESTION: suggestion,
    }
