"""Replays queued mutations once the network is back."""
import threading
from typing import Any, Callable, Dict, List, Optional

from treesync import settings
from treesync.connectivity import ConnectivityMonitor
from treesync.events import EventBus
from treesync.logging_conf import logger
from treesync.queue.action_queue import ActionQueue
from treesync.queue.models import ActionKind, ReplayResult

Handler = Callable[[Any], bool]


class QueueProcessor:
    """Replays the offline queue against per-kind handlers.

    Only one run is ever in flight per processor. Actions are replayed
    oldest first; a handler returning False or raising counts as a failed
    attempt and the action stays queued until the retry bound drops it.
    """

    def __init__(
        self,
        queue: ActionQueue,
        connectivity: ConnectivityMonitor,
        handlers: Optional[Dict[ActionKind, Handler]] = None,
        settle_delay: Optional[float] = None,
        startup_delay: Optional[float] = None,
    ):
        self.queue = queue
        self.connectivity = connectivity
        self.handlers = handlers or {}
        self.settle_delay = settle_delay if settle_delay is not None else settings.SETTLE_DELAY
        self.startup_delay = startup_delay if startup_delay is not None else settings.STARTUP_SYNC_DELAY

        self._run_lock = threading.Lock()
        self._timers: List[threading.Timer] = []
        self._timers_lock = threading.Lock()
        self._unsubscribe_connectivity = None
        self._completed = EventBus("replay")

    def on_complete(self, handler: Callable[[ReplayResult], None]) -> Callable[[], None]:
        """Subscribe to the result of every finished run."""
        return self._completed.subscribe(handler)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def process(self, handlers: Optional[Dict[ActionKind, Handler]] = None) -> ReplayResult:
        """Replay every queued action once. Returns immediately with zero counts
        when another run is in progress or the network is down."""
        handlers = handlers if handlers is not None else self.handlers

        if not self._run_lock.acquire(blocking=False):
            logger.debug("Replay already in progress; skipping")
            return ReplayResult()

        try:
            if not self.connectivity.is_online():
                logger.debug("Offline; replay skipped")
                return ReplayResult()

            result = ReplayResult()
            actions = self.queue.peek_all()
            if actions:
                logger.info(f"Replaying {len(actions)} queued actions")

            for action in actions:
                handler = handlers.get(action.kind)
                if handler is None:
                    logger.warning(f"No handler for {action.kind.value} action {action.id}; dropping it")
                    self.queue.dequeue(action.id)
                    result.failed += 1
                    result.dropped_ids.append(action.id)
                    continue

                try:
                    success = bool(handler(action.payload))
                except Exception as e:
                    logger.error(f"Failed to replay action {action.id}: {e}", exc_info=True)
                    success = False

                if success:
                    self.queue.dequeue(action.id)
                    result.synced += 1
                elif not self.queue.increment_retry(action.id):
                    result.failed += 1
                    result.dropped_ids.append(action.id)
        finally:
            self._run_lock.release()

        logger.info(f"Replay finished: {result.synced} synced, {result.failed} failed")
        self._completed.emit(result)
        return result

    def start(self) -> None:
        """Hook up the reconnect trigger and schedule the startup run."""
        if self._unsubscribe_connectivity is None:
            self._unsubscribe_connectivity = self.connectivity.add_listener(self._on_connectivity_change)

        if self.connectivity.is_online() and self.queue.size() > 0:
            self._schedule(self.startup_delay)

    def stop(self) -> None:
        if self._unsubscribe_connectivity:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        with self._timers_lock:
            for timer in self._timers:
                timer.cancel()
            self._timers = []

    def notify_visible(self) -> None:
        """The consumer came back to the foreground."""
        if self.connectivity.is_online():
            self._schedule(0)

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info(f"Back online; replaying queue in {self.settle_delay}s")
            self._schedule(self.settle_delay)

    def _schedule(self, delay: float) -> None:
        timer = threading.Timer(delay, self._run_if_online)
        timer.daemon = True
        with self._timers_lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _run_if_online(self) -> None:
        # Re-check after the settle delay so a flapping connection does not trigger a run
        if not self.connectivity.is_online():
            return
        try:
            self.process()
        except Exception as e:
            logger.error(f"Queue replay crashed: {e}", exc_info=True)
