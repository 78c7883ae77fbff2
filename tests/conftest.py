import queue
import time

import pytest

from treesync.connectivity import ConnectivityMonitor
from treesync.errors import ApiError
from treesync.queue.action_queue import ActionQueue
from treesync.sync.models import ChannelConfig, Strategy


def wait_until(predicate, timeout=2.0, interval=0.005):
    """Poll ``predicate`` until it is truthy or fail the test."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(interval)
    raise AssertionError("condition not met in time")


class FakeStream:
    """Stands in for a streaming HTTP response; lines are pushed by the test."""

    def __init__(self, lines=()):
        self._lines = queue.Queue()
        self.closed = False
        self.push(*lines)

    def push(self, *lines):
        for line in lines:
            self._lines.put(line)

    def push_event(self, data, event=None):
        if event:
            self.push(f"event: {event}")
        self.push(f"data: {data}", "")

    def end(self):
        """Server closes the connection."""
        self._lines.put(None)

    def iter_lines(self, decode_unicode=False):
        while True:
            line = self._lines.get()
            if line is None or self.closed:
                return
            yield line

    def close(self):
        self.closed = True
        self._lines.put(None)


class FakeStreamClient:
    def __init__(self, fail_opens=0):
        self.streams = []
        self.opened = []
        self.fail_opens = fail_opens

    def open_stream(self, endpoint, params=None):
        self.opened.append((endpoint, params))
        if self.fail_opens:
            self.fail_opens -= 1
            raise ApiError("connection refused", retryable=True)
        stream = FakeStream()
        self.streams.append(stream)
        return stream


class FakePollClient:
    """Returns queued responses in order; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses):
        self.responses = list(responses) or [[]]
        self.calls = 0

    def fetch_collection(self, endpoint, params=None):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(initial=True)


@pytest.fixture
def action_queue(tmp_path):
    return ActionQueue(path=tmp_path / "offline_action_queue.json", max_retries=3)


@pytest.fixture
def stream_config():
    return ChannelConfig(
        channel_id="admin:suggestions",
        strategy=Strategy.EVENT_STREAM,
        endpoint="/api/v1/stream/admin",
        filter="pending",
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )


@pytest.fixture
def poll_config():
    return ChannelConfig(
        channel_id="family-tree",
        strategy=Strategy.POLLING,
        endpoint="/api/v1/tree",
        poll_interval=0.01,
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
        failure_threshold=3,
    )
