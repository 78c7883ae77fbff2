"""Owner of all sync channels."""
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from treesync.connectivity import ConnectivityMonitor
from treesync.events import EventBus
from treesync.logging_conf import logger
from treesync.sync.channel import Channel
from treesync.sync.event_stream import EventStreamChannel
from treesync.sync.models import ChangeType, ChannelConfig, ChannelError, ChannelState, Strategy, SyncEvent
from treesync.sync.polling import PollingChannel
from treesync.sync.subscription import Subscription

ChannelKey = Tuple[str, Optional[str]]

_STATUS_PRIORITY = (
    ChannelState.ERROR,
    ChannelState.RECONNECTING,
    ChannelState.CONNECTING,
)


def create_channel(config: ChannelConfig, client, connectivity: Optional[ConnectivityMonitor] = None) -> Channel:
    """Build the channel implementation for ``config.strategy``."""
    if config.strategy is Strategy.POLLING:
        return PollingChannel(config, client, connectivity)
    if config.strategy is Strategy.EVENT_STREAM:
        return EventStreamChannel(config, client, connectivity)
    raise NotImplementedError(f"Sync strategy '{config.strategy.value}' is not implemented yet")


@dataclass
class _Entry:
    channel: Channel
    subscribers: List[Subscription] = field(default_factory=list)


class LiveCounts(Mapping):
    """Read-only view of collection sizes, re-read on every access."""

    def __init__(self, manager: "SyncManager", keys: Iterable[Union[str, ChannelKey]]):
        self._manager = manager
        self._keys = list(keys)

    def __getitem__(self, key):
        if key not in self._keys:
            raise KeyError(key)
        return self._manager.count(key)

    def __iter__(self):
        return iter(self._keys)

    def __len__(self):
        return len(self._keys)

    def total(self) -> int:
        return sum(self[key] for key in self._keys)

    def __repr__(self):
        return f"LiveCounts({dict(self)!r})"


class SyncManager:
    """Creates, shares and tears down channels.

    Channels are reference counted per ``(channel_id, filter)``: the first
    subscriber starts the channel, later ones share its transport and data,
    and the last one to leave closes it.
    """

    def __init__(self, client, connectivity: Optional[ConnectivityMonitor] = None,
                 channel_factory: Callable[..., Channel] = create_channel):
        self.client = client
        self.connectivity = connectivity or ConnectivityMonitor()
        self._channel_factory = channel_factory
        self._registry: Dict[ChannelKey, _Entry] = {}
        self._lock = threading.RLock()
        self._statuses = EventBus("sync-status")
        self._errors = EventBus("sync-error")

    def subscribe(
        self,
        config: ChannelConfig,
        on_data: Optional[Callable[[SyncEvent], None]] = None,
        on_status: Optional[Callable[[ChannelState, str], None]] = None,
        on_error: Optional[Callable[[ChannelError], None]] = None,
    ) -> Subscription:
        """Attach to the channel for ``config.key``, creating it if needed."""
        with self._lock:
            entry = self._registry.get(config.key)
            created = entry is None
            if created:
                channel = self._channel_factory(config, self.client, self.connectivity)
                channel.on_status(self._statuses.emit)
                channel.on_error(self._errors.emit)
                entry = _Entry(channel)
                self._registry[config.key] = entry
                logger.info(f"Created channel {config.channel_id} (filter={config.filter}, {config.strategy.value})")

            subscription = Subscription(self, entry.channel, on_data, on_status, on_error)
            entry.subscribers.append(subscription)
            count = len(entry.subscribers)

        if created:
            entry.channel.start()
        else:
            logger.debug(f"Channel {config.channel_id} now has {count} subscribers")
            if entry.channel.initialized:
                subscription._deliver(SyncEvent(ChangeType.SNAPSHOT, config.channel_id, entry.channel.items()))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Detach a subscriber; the last one out closes the channel."""
        with self._lock:
            entry = self._registry.get(subscription.key)
            if entry is None or subscription not in entry.subscribers:
                return False
            entry.subscribers.remove(subscription)
            subscription._detach()

            channel = None
            if not entry.subscribers:
                del self._registry[subscription.key]
                channel = entry.channel

        # Observers may call back into the manager, so stop outside the lock
        if channel is not None:
            channel.stop()
        return True

    def get_channel(self, channel_id: str, filter: Optional[str] = None) -> Optional[Channel]:
        with self._lock:
            entry = self._registry.get((channel_id, filter))
            return entry.channel if entry else None

    def get_state(self, channel_id: str, filter: Optional[str] = None) -> Optional[ChannelState]:
        channel = self.get_channel(channel_id, filter)
        return channel.state if channel else None

    def get_items(self, channel_id: str, filter: Optional[str] = None) -> List[dict]:
        channel = self.get_channel(channel_id, filter)
        return channel.items() if channel else []

    def subscriber_count(self, channel_id: str, filter: Optional[str] = None) -> int:
        with self._lock:
            entry = self._registry.get((channel_id, filter))
            return len(entry.subscribers) if entry else 0

    def count(self, key: Union[str, ChannelKey]) -> int:
        """Collection size for a key; a bare channel id sums over all its filters."""
        with self._lock:
            if isinstance(key, tuple):
                entry = self._registry.get(key)
                channels = [entry.channel] if entry else []
            else:
                channels = [e.channel for k, e in self._registry.items() if k[0] == key]
        return sum(len(channel) for channel in channels)

    def get_aggregate_counts(self, keys: Iterable[Union[str, ChannelKey]]) -> LiveCounts:
        return LiveCounts(self, keys)

    def reconnect(self, channel_id: str, filter: Optional[str] = None) -> bool:
        channel = self.get_channel(channel_id, filter)
        return channel.reconnect() if channel else False

    def channel_keys(self) -> List[ChannelKey]:
        with self._lock:
            return list(self._registry.keys())

    def overall_status(self) -> ChannelState:
        with self._lock:
            states = [entry.channel.state for entry in self._registry.values()]
        if not states:
            return ChannelState.IDLE
        for state in _STATUS_PRIORITY:
            if state in states:
                return state
        if all(state is ChannelState.CONNECTED for state in states):
            return ChannelState.CONNECTED
        return ChannelState.IDLE

    def on_status(self, handler: Callable[[ChannelState, str], None]) -> Callable[[], None]:
        """Status changes from every channel."""
        return self._statuses.subscribe(handler)

    def on_error(self, handler: Callable[[ChannelError], None]) -> Callable[[], None]:
        """Errors from every channel."""
        return self._errors.subscribe(handler)

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._registry.values())
            self._registry.clear()
            for entry in entries:
                for subscription in entry.subscribers:
                    subscription._detach()
        for entry in entries:
            entry.channel.stop(timeout=0)
        for entry in entries:
            entry.channel.join()
        logger.info(f"Closed {len(entries)} channels")
