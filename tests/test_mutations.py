from unittest.mock import MagicMock

import pytest

from treesync.errors import ApiError
from treesync.handlers import build_replay_handlers
from treesync.mutations import MutationService
from treesync.queue.models import ActionKind
from treesync.queue.processor import QueueProcessor


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def service(client, action_queue, connectivity):
    return MutationService(client, action_queue, connectivity)


def test_online_edit_is_applied_directly(service, client, action_queue):
    client.update_person.return_value = {"id": "p1", "bio": "x"}

    outcome = service.edit_person("p1", {"bio": "x"})

    assert outcome.applied
    assert outcome.result == {"id": "p1", "bio": "x"}
    client.update_person.assert_called_once_with("p1", {"bio": "x"})
    assert action_queue.size() == 0


def test_offline_add_is_queued(service, client, action_queue, connectivity):
    connectivity.set_online(False)

    outcome = service.add_person({"name": "Ada"}, parent_id="p0")

    assert not outcome.applied
    client.create_person.assert_not_called()
    queued = action_queue.get(outcome.queued_id)
    assert queued.kind is ActionKind.ADD
    assert queued.payload == {"person": {"name": "Ada"}, "parent_id": "p0"}


def test_retryable_failure_is_queued(service, client, action_queue):
    client.delete_person.side_effect = ApiError("gateway timeout", status=504, retryable=True)

    outcome = service.delete_person("p1")

    assert not outcome.applied
    assert action_queue.get(outcome.queued_id).payload == {"id": "p1"}


def test_rejected_mutation_raises(service, client, action_queue):
    client.create_suggestion.side_effect = ApiError("invalid", status=422)

    with pytest.raises(ApiError):
        service.suggest({"type": "edit", "person_id": "p1"})
    assert action_queue.size() == 0


@pytest.mark.parametrize("kind, payload, method, args", [
    (ActionKind.ADD, {"person": {"name": "Ada"}}, "create_person", ({"name": "Ada"}, None)),
    (ActionKind.ADD, {"person": {"name": "Bo"}, "parent_id": "p0"}, "create_person", ({"name": "Bo"}, "p0")),
    (ActionKind.EDIT, {"id": "p1", "updates": {"bio": "x"}}, "update_person", ("p1", {"bio": "x"})),
    (ActionKind.DELETE, {"id": "p1"}, "delete_person", ("p1",)),
    (ActionKind.SUGGESTION, {"type": "add"}, "create_suggestion", ({"type": "add"},)),
])
def test_replay_handlers_call_the_api(client, kind, payload, method, args):
    handlers = build_replay_handlers(client)

    assert handlers[kind](payload) is True
    getattr(client, method).assert_called_once_with(*args)


def test_queued_actions_replay_when_back_online(service, client, action_queue, connectivity):
    connectivity.set_online(False)
    service.add_person({"name": "Ada"})
    service.edit_person("p1", {"name": "Ada L."})
    connectivity.set_online(True)

    result = QueueProcessor(action_queue, connectivity, service.handlers).process()

    assert (result.synced, result.failed) == (2, 0)
    client.create_person.assert_called_once_with({"name": "Ada"}, None)
    client.update_person.assert_called_once_with("p1", {"name": "Ada L."})


def test_empty_response_body_counts_as_success(client):
    client.delete_person.return_value = {}

    assert build_replay_handlers(client)[ActionKind.DELETE]({"id": "p1"}) is True


def test_api_error_during_replay_is_a_failed_attempt(service, client, action_queue, connectivity):
    connectivity.set_online(False)
    outcome = service.delete_person("p1")
    connectivity.set_online(True)
    client.delete_person.side_effect = ApiError("server error", status=500, retryable=True)

    result = QueueProcessor(action_queue, connectivity, service.handlers).process()

    assert (result.synced, result.failed) == (0, 0)
    assert action_queue.get(outcome.queued_id).retry_count == 1
