"""Server-push event stream strategy."""
from typing import Iterable

from treesync.errors import MalformedEventError, TransportError
from treesync.logging_conf import logger
from treesync.sync.channel import Channel
from treesync.sync.models import ChangeType
from treesync.sync.wire import DEFAULT_EVENT, KEEPALIVE_EVENTS, iter_sse, parse_stream_event


class EventStreamChannel(Channel):
    """Mirrors a server collection from a snapshot plus incremental events.

    Every (re)connect asks the server for a fresh snapshot; there is no
    resume cursor.
    """

    def handle_frame(self, event_name: str, data: str) -> bool:
        """Apply one stream frame. Frames for other collections are ignored."""
        if event_name not in (self.config.event_name, DEFAULT_EVENT) and event_name not in KEEPALIVE_EVENTS:
            return False

        try:
            event = parse_stream_event(event_name, data)
        except MalformedEventError as e:
            logger.warning(f"Channel {self.channel_id} dropping malformed event: {e}")
            return False

        if event.type is ChangeType.KEEPALIVE:
            return False
        if event.type is ChangeType.SNAPSHOT:
            logger.info(f"Channel {self.channel_id} snapshot: {len(event.items)} items")
            return self.apply_snapshot(event.items)
        return self.apply_change(event.type, event.item)

    def consume(self, lines: Iterable[str]) -> None:
        """Feed raw stream lines through the framer until they run out or we are interrupted."""
        for event_name, data in iter_sse(lines):
            if self._interrupted:
                return
            self.handle_frame(event_name, data)

    def _session(self) -> None:
        response = self.client.open_stream(self.config.endpoint, self.config.params)
        if not self._attach_transport(response):
            response.close()
            return

        try:
            self.consume(response.iter_lines(decode_unicode=True))
        except Exception as e:
            if self._interrupted:
                return
            raise TransportError(f"Stream read failed: {e}") from e

        if not self._interrupted:
            raise TransportError("Stream closed by server")
