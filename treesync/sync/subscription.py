"""Consumer-side handle on a shared channel."""
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from treesync.logging_conf import logger
from treesync.sync.models import ChangeType, ChannelError, ChannelState, SyncEvent


class Subscription:
    """What one consumer sees of a channel: items, status and a new-item badge.

    Several subscriptions can share one channel; each keeps its own badge.
    """

    def __init__(
        self,
        manager,
        channel,
        on_data: Optional[Callable[[SyncEvent], None]] = None,
        on_status: Optional[Callable[[ChannelState, str], None]] = None,
        on_error: Optional[Callable[[ChannelError], None]] = None,
    ):
        self.key = channel.config.key
        self._manager = manager
        self._channel = channel
        self._on_data = on_data
        self._new_ids: Set[Any] = set()
        self._lock = threading.Lock()
        self.active = True

        self._detachers = [channel.on_data(self._handle_data)]
        if on_status:
            self._detachers.append(channel.on_status(on_status))
        if on_error:
            self._detachers.append(channel.on_error(on_error))

    @property
    def channel_id(self) -> str:
        return self._channel.channel_id

    @property
    def items(self) -> List[Dict[str, Any]]:
        return self._channel.items()

    @property
    def status(self) -> ChannelState:
        return self._channel.state

    @property
    def is_connected(self) -> bool:
        return self.status is ChannelState.CONNECTED

    @property
    def is_loading(self) -> bool:
        return not self._channel.initialized

    @property
    def last_error(self) -> Optional[ChannelError]:
        return self._channel.last_error

    @property
    def last_sync_at(self) -> Optional[float]:
        return self._channel.last_sync_at

    @property
    def new_item_count(self) -> int:
        with self._lock:
            return len(self._new_ids)

    def clear_new_item_count(self) -> None:
        with self._lock:
            self._new_ids.clear()

    def refresh(self) -> bool:
        """Force the underlying channel to reconnect."""
        return self._channel.reconnect()

    def close(self) -> None:
        self._manager.unsubscribe(self)

    def _handle_data(self, event: SyncEvent) -> None:
        with self._lock:
            if event.type is ChangeType.ADDED and event.is_new:
                self._new_ids.add(event.item["id"])
            elif event.type is ChangeType.REMOVED:
                self._new_ids.discard(event.item["id"])
            elif event.type is ChangeType.SNAPSHOT:
                present = {item["id"] for item in event.items}
                self._new_ids &= present
        if self._on_data:
            self._on_data(event)

    def _deliver(self, event: SyncEvent) -> None:
        """Send an event to this subscriber only."""
        if not self._on_data:
            return
        try:
            self._on_data(event)
        except Exception as e:
            logger.error(f"Subscriber of {self.channel_id} failed on replayed snapshot: {e}", exc_info=True)

    def _detach(self) -> None:
        self.active = False
        for detach in self._detachers:
            detach()
        self._detachers = []
