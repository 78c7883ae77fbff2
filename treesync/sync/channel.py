"""Channel base class: state machine, reconnect loop and collection updates."""
import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from treesync.connectivity import ConnectivityMonitor
from treesync.errors import ChannelStateError, MalformedEventError
from treesync.events import EventBus
from treesync.logging_conf import logger
from treesync.sync.models import ChangeType, ChannelConfig, ChannelError, ChannelState, SyncEvent
from treesync.sync.reconciler import LocalCollection

TRANSITIONS = {
    ChannelState.IDLE: {ChannelState.CONNECTING, ChannelState.CLOSED},
    ChannelState.CONNECTING: {ChannelState.CONNECTED, ChannelState.ERROR, ChannelState.CLOSED},
    ChannelState.CONNECTED: {ChannelState.RECONNECTING, ChannelState.CLOSED},
    ChannelState.RECONNECTING: {ChannelState.CONNECTING, ChannelState.CLOSED},
    ChannelState.ERROR: {ChannelState.RECONNECTING, ChannelState.CLOSED},
    ChannelState.CLOSED: set(),
}


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff for the given 1-based attempt, capped."""
    if attempt < 1:
        return 0.0
    return min(base * (2 ** (attempt - 1)), cap)


class Channel:
    """One synchronized collection bound to a transport strategy.

    The channel runs its transport on a dedicated thread. Collection updates
    and state changes happen under ``_lock``; the resulting notifications are
    queued and delivered by ``_flush()`` after the lock is released, so an
    observer may call back into the channel or its manager. Data and error
    notifications still pending when the channel closes are discarded.

    Subclasses implement ``_session()``: connect, feed data in through
    ``apply_snapshot``/``apply_change`` and return or raise when the
    transport drops.
    """

    def __init__(self, config: ChannelConfig, client, connectivity: Optional[ConnectivityMonitor] = None):
        self.config = config
        self.client = client
        self.connectivity = connectivity or ConnectivityMonitor()
        self.collection = LocalCollection(config.sort_key, config.sort_descending)

        self.reconnect_attempts = 0
        self.last_error: Optional[ChannelError] = None
        self.last_sync_at: Optional[float] = None
        self.initialized = False

        self._state = ChannelState.IDLE
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._reconnect_requested = False
        self._transport = None
        self._outbox = deque()
        self._emit_lock = threading.Lock()

        self._data = EventBus(f"{config.channel_id}:data")
        self._status = EventBus(f"{config.channel_id}:status")
        self._errors = EventBus(f"{config.channel_id}:error")

    @property
    def channel_id(self) -> str:
        return self.config.channel_id

    @property
    def state(self) -> ChannelState:
        with self._lock:
            return self._state

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.CLOSED

    def items(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self.collection.items()

    def __len__(self) -> int:
        with self._lock:
            return len(self.collection)

    def on_data(self, handler: Callable[[SyncEvent], None]) -> Callable[[], None]:
        return self._data.subscribe(handler)

    def on_status(self, handler: Callable[[ChannelState, str], None]) -> Callable[[], None]:
        return self._status.subscribe(handler)

    def on_error(self, handler: Callable[[ChannelError], None]) -> Callable[[], None]:
        return self._errors.subscribe(handler)

    # Lifecycle

    def start(self) -> None:
        with self._lock:
            if self._state is not ChannelState.IDLE or self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name=f"channel-{self.channel_id}", daemon=True)
        self._thread.start()
        logger.info(f"Channel {self.channel_id} started ({self.config.strategy.value})")

    def stop(self, timeout: float = 10) -> None:
        """Close the channel for good and release its transport.

        ``timeout=0`` closes without waiting for the worker thread; call
        ``join()`` later.
        """
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return
            self._stop_event.set()
            self._wake.set()
            self._set_state(ChannelState.CLOSED)
            self._close_transport()

        self._flush()
        self._data.clear()
        self._status.clear()
        self._errors.clear()
        logger.info(f"Channel {self.channel_id} closed")
        if timeout:
            self.join(timeout)

    def join(self, timeout: float = 10) -> None:
        thread = self._thread
        if thread and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=timeout)

    def reconnect(self) -> bool:
        """Drop the current transport and reconnect right away."""
        with self._lock:
            if self._state in (ChannelState.IDLE, ChannelState.CLOSED):
                return False
            self._reconnect_requested = True
            self._wake.set()
            self._close_transport()
        logger.info(f"Channel {self.channel_id} reconnect requested")
        return True

    # Data

    def apply_snapshot(self, items: List[Dict[str, Any]]) -> bool:
        """Replace the collection wholesale; the first snapshot completes connecting."""
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return False

            valid = []
            for item in items:
                if not isinstance(item, dict) or item.get("id") is None:
                    logger.warning(f"Channel {self.channel_id} dropping item without id: {item!r}")
                    continue
                valid.append(self._normalize(item))
            self.collection.replace(valid)

            self.initialized = True
            self.last_sync_at = time.time()
            if self._state is ChannelState.CONNECTING:
                self._set_state(ChannelState.CONNECTED)
                self.reconnect_attempts = 0

            self._post(self._data, SyncEvent(ChangeType.SNAPSHOT, self.channel_id, self.collection.items()))

        self._flush()
        return True

    def apply_change(self, change: ChangeType, item: Dict[str, Any]) -> bool:
        """Merge one incremental event. Returns True if the collection changed."""
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return False

            try:
                item = self._normalize(item)
                is_new = False
                if change is ChangeType.ADDED:
                    had_items = len(self.collection) > 0
                    if not self.collection.add(item):
                        return False
                    # First arrival into an empty collection is still warm-up, not news
                    is_new = self.initialized and had_items
                elif change is ChangeType.MODIFIED:
                    if not self.collection.modify(item):
                        logger.debug(f"Channel {self.channel_id} ignoring modify of unknown id {item.get('id')}")
                        return False
                elif change is ChangeType.REMOVED:
                    if self.collection.remove(item) is None:
                        return False
                else:
                    return False
            except MalformedEventError as e:
                logger.warning(f"Channel {self.channel_id} dropping malformed {change.value} event: {e}")
                return False

            self.last_sync_at = time.time()
            self._post(self._data, SyncEvent(change, self.channel_id, self.collection.items(), item=item, is_new=is_new))

        self._flush()
        return True

    def _normalize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return self.config.normalize(item) if self.config.normalize else item

    # State machine

    def _set_state(self, new_state: ChannelState) -> None:
        """Apply a transition. Caller holds the lock."""
        if new_state is self._state:
            return
        if new_state not in TRANSITIONS[self._state]:
            raise ChannelStateError(
                f"Channel {self.channel_id}: illegal transition {self._state.value} -> {new_state.value}"
            )
        logger.info(f"Channel {self.channel_id}: {self._state.value} -> {new_state.value}")
        self._state = new_state
        self._post(self._status, new_state, self.channel_id)

    def _transition(self, new_state: ChannelState) -> bool:
        """Transition unless closed. A closed channel is never revived."""
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return False
            self._set_state(new_state)
        self._flush()
        return True

    def _emit_error(self, code: str, message: str, recoverable: bool) -> None:
        """Record and queue an error. Delivered on the next ``_flush()``."""
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return
            self.last_error = ChannelError(code, message, recoverable, self.channel_id)
            self._post(self._errors, self.last_error)

    # Notifications

    def _post(self, bus: EventBus, *args) -> None:
        """Queue a notification. Caller holds the lock."""
        self._outbox.append((bus, args))

    def _flush(self) -> None:
        """Deliver queued notifications in order, without holding ``_lock``.

        Only one thread drains at a time; a flush that finds another thread
        draining (or is called from inside an observer) leaves the work to it.
        """
        while self._emit_lock.acquire(blocking=False):
            try:
                while True:
                    with self._lock:
                        if not self._outbox:
                            break
                        bus, args = self._outbox.popleft()
                        if self._state is ChannelState.CLOSED and bus is not self._status:
                            continue
                    bus.emit(*args)
            finally:
                self._emit_lock.release()

            with self._lock:
                if not self._outbox:
                    return

    # Run loop

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if not self._await_online():
                break

            with self._lock:
                self._reconnect_requested = False
                self._wake.clear()
                if self._state is ChannelState.CLOSED:
                    break
                if self._state is not ChannelState.CONNECTING:
                    self._set_state(ChannelState.CONNECTING)
            self._flush()

            failure: Optional[Exception] = None
            try:
                self._session()
            except Exception as e:
                failure = e
            finally:
                with self._lock:
                    self._close_transport()

            if self._stop_event.is_set():
                break

            if self._reconnect_requested:
                with self._lock:
                    if self._state in (ChannelState.CONNECTED, ChannelState.ERROR):
                        self._set_state(ChannelState.RECONNECTING)
                self._flush()
                continue

            if not self._handle_failure(failure):
                break

        logger.debug(f"Channel {self.channel_id} thread exiting")

    def _handle_failure(self, failure: Optional[Exception]) -> bool:
        """Move to ERROR/RECONNECTING and wait out the backoff. False ends the loop."""
        message = str(failure) if failure else "connection closed by server"
        give_up = False
        with self._lock:
            if self._state is ChannelState.CLOSED:
                return False

            was_connecting = self._state is ChannelState.CONNECTING
            if was_connecting:
                self._set_state(ChannelState.ERROR)
                logger.warning(f"Channel {self.channel_id} failed to connect: {message}")
            else:
                logger.warning(f"Channel {self.channel_id} lost connection: {message}")

            self.reconnect_attempts += 1
            self._emit_error("CONNECTION_ERROR", message, True)

            limit = self.config.max_reconnect_attempts
            if was_connecting and limit and self.reconnect_attempts > limit:
                self._emit_error(
                    "MAX_RECONNECT_EXCEEDED",
                    f"Gave up after {limit} reconnect attempts: {message}",
                    False,
                )
                logger.error(f"Channel {self.channel_id} gave up after {limit} reconnect attempts")
                give_up = True
            else:
                self._set_state(ChannelState.RECONNECTING)
                delay = backoff_delay(
                    self.reconnect_attempts, self.config.reconnect_delay, self.config.max_reconnect_delay
                )

        self._flush()
        if give_up:
            return False

        logger.info(f"Channel {self.channel_id} reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts})")
        self._sleep(delay)
        return not self._stop_event.is_set()

    def _await_online(self) -> bool:
        logged = False
        while not self._stop_event.is_set():
            if self.connectivity.wait_until_online(timeout=1):
                return True
            if not logged:
                logger.info(f"Channel {self.channel_id} waiting for network")
                logged = True
        return False

    def _sleep(self, seconds: float) -> bool:
        """Wait, waking early on stop or reconnect. Returns True if woken early."""
        return self._wake.wait(seconds)

    @property
    def _interrupted(self) -> bool:
        return self._stop_event.is_set() or self._reconnect_requested

    def _attach_transport(self, transport) -> bool:
        """Keep a handle to close on stop/reconnect. False if already interrupted."""
        with self._lock:
            if self._interrupted:
                return False
            self._transport = transport
            return True

    def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as e:
            logger.debug(f"Channel {self.channel_id} error closing transport: {e}")

    def _session(self) -> None:
        raise NotImplementedError
