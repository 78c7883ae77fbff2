"""Interval polling strategy."""
import requests

from treesync.errors import ApiError, TransportError
from treesync.logging_conf import logger
from treesync.sync.channel import Channel
from treesync.sync.models import ChannelState


class PollingChannel(Channel):
    """Fetches the full collection every ``poll_interval`` seconds.

    Each successful fetch replaces the collection. Once connected, isolated
    failures keep the last snapshot; ``failure_threshold`` consecutive
    failures count as a dropped connection.
    """

    def poll_once(self) -> bool:
        """Fetch and apply one snapshot. Raises on fetch failure."""
        items = self.client.fetch_collection(self.config.endpoint, self.config.params)
        return self.apply_snapshot(items)

    def _session(self) -> None:
        failures = 0
        while not self._interrupted:
            try:
                self.poll_once()
                failures = 0
            except (ApiError, requests.exceptions.RequestException) as e:
                if self.state is not ChannelState.CONNECTED:
                    raise TransportError(f"Initial fetch failed: {e}") from e

                failures += 1
                logger.warning(
                    f"Channel {self.channel_id} poll failed ({failures}/{self.config.failure_threshold}): {e}"
                )
                self._emit_error("FETCH_ERROR", str(e), True)
                self._flush()
                if failures >= self.config.failure_threshold:
                    raise TransportError(f"{failures} consecutive polls failed: {e}") from e

            if self._sleep(self.config.poll_interval):
                return
