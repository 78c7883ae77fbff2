import threading

import pytest

from conftest import FakeStreamClient
from treesync.errors import ChannelStateError
from treesync.sync.channel import TRANSITIONS, backoff_delay
from treesync.sync.event_stream import EventStreamChannel
from treesync.sync.models import ChangeType, ChannelState

S = ChannelState


@pytest.fixture
def channel(stream_config, connectivity):
    channel = EventStreamChannel(stream_config, FakeStreamClient(), connectivity)
    yield channel
    channel.stop()


def connected(channel, items=()):
    channel._transition(S.CONNECTING)
    channel.apply_snapshot(list(items))
    return channel


def test_transition_table_matches_lifecycle():
    assert TRANSITIONS[S.IDLE] == {S.CONNECTING, S.CLOSED}
    assert TRANSITIONS[S.CONNECTING] == {S.CONNECTED, S.ERROR, S.CLOSED}
    assert TRANSITIONS[S.CONNECTED] == {S.RECONNECTING, S.CLOSED}
    assert TRANSITIONS[S.RECONNECTING] == {S.CONNECTING, S.CLOSED}
    assert TRANSITIONS[S.ERROR] == {S.RECONNECTING, S.CLOSED}
    assert TRANSITIONS[S.CLOSED] == set()


def test_illegal_transition_raises(channel):
    with pytest.raises(ChannelStateError):
        channel._transition(S.CONNECTED)


def test_closed_channel_is_never_revived(channel):
    channel.stop()

    assert channel._transition(S.CONNECTING) is False
    assert channel.state is S.CLOSED


def test_status_observers_see_every_transition(channel):
    seen = []
    channel.on_status(lambda state, channel_id: seen.append(state))

    connected(channel)
    channel.stop()

    assert seen == [S.CONNECTING, S.CONNECTED, S.CLOSED]


@pytest.mark.parametrize("attempt, expected", [(0, 0.0), (1, 3), (2, 6), (3, 12), (4, 24), (5, 30), (12, 30)])
def test_backoff_is_exponential_and_capped(attempt, expected):
    assert backoff_delay(attempt, base=3, cap=30) == expected


def test_snapshot_connects_and_resets_attempts(channel):
    channel.reconnect_attempts = 4

    connected(channel, [{"id": 1}, {"id": 2}])

    assert channel.state is S.CONNECTED
    assert channel.reconnect_attempts == 0
    assert {item["id"] for item in channel.items()} == {1, 2}


def test_example_scenario_snapshot_add_remove(channel):
    connected(channel, [{"id": 1}, {"id": 2}])

    channel.apply_change(ChangeType.ADDED, {"id": 3})
    channel.apply_change(ChangeType.REMOVED, {"id": 1})

    assert {item["id"] for item in channel.items()} == {2, 3}


def test_first_add_into_empty_snapshot_is_not_new(channel):
    events = []
    channel.on_data(events.append)
    connected(channel, [])

    channel.apply_change(ChangeType.ADDED, {"id": "a", "created_at": 1})
    channel.apply_change(ChangeType.ADDED, {"id": "b", "created_at": 2})

    added = [e for e in events if e.type is ChangeType.ADDED]
    assert [(e.item["id"], e.is_new) for e in added] == [("a", False), ("b", True)]


def test_add_before_snapshot_is_not_new(channel):
    events = []
    channel.on_data(events.append)
    channel.apply_change(ChangeType.ADDED, {"id": "a"})
    channel.apply_change(ChangeType.ADDED, {"id": "b"})

    assert [e.is_new for e in events] == [False, False]


def test_duplicate_add_is_ignored(channel):
    events = []
    connected(channel, [{"id": 1}])
    channel.on_data(events.append)

    assert channel.apply_change(ChangeType.ADDED, {"id": 1, "v": 2}) is False
    assert events == []
    assert len(channel) == 1


def test_malformed_item_is_dropped_without_corrupting(channel, caplog):
    connected(channel, [{"id": 1}])

    assert channel.apply_change(ChangeType.ADDED, {"name": "no id"}) is False
    assert channel.items() == [{"id": 1}]
    assert "malformed" in caplog.text


def test_snapshot_skips_items_without_id(channel):
    connected(channel, [{"id": 1}, {"oops": True}, "junk"])

    assert channel.items() == [{"id": 1}]


def test_no_callbacks_after_close(channel):
    events = []
    connected(channel, [{"id": 1}])
    channel.on_data(events.append)
    channel.stop()

    assert channel.apply_snapshot([{"id": 9}]) is False
    assert channel.apply_change(ChangeType.ADDED, {"id": 2}) is False
    assert events == []


def test_reconnect_on_idle_channel_is_refused(channel):
    assert channel.reconnect() is False


def test_observers_run_outside_the_channel_lock(channel):
    reads = []

    def read_from_another_thread(event):
        reader = threading.Thread(target=lambda: reads.append(len(channel)))
        reader.start()
        reader.join(1)

    channel.on_data(read_from_another_thread)
    connected(channel, [{"id": 1}])
    channel.apply_change(ChangeType.ADDED, {"id": 2})

    assert reads == [1, 2]


def test_observer_may_stop_its_own_channel(channel):
    states = []
    channel.on_status(lambda state, channel_id: states.append(state))
    channel.on_data(lambda event: channel.stop())

    connected(channel, [{"id": 1}])

    assert channel.state is S.CLOSED
    assert states[:2] == [S.CONNECTING, S.CONNECTED]
