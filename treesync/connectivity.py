"""Process-wide network reachability signal."""
import threading
from typing import Callable, Optional

import requests

from treesync.events import EventBus
from treesync.logging_conf import logger


class ConnectivityMonitor:
    """Holds the online/offline flag and tells listeners about transitions.

    One instance is created at startup and handed to every component that
    cares; nothing reads connectivity from a global.
    """

    def __init__(self, initial: bool = True):
        self._online = initial
        self._lock = threading.Lock()
        self._online_event = threading.Event()
        if initial:
            self._online_event.set()
        self._listeners = EventBus("connectivity")

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def set_online(self, online: bool) -> None:
        """Update the flag; listeners only hear about actual transitions."""
        with self._lock:
            if online == self._online:
                return
            self._online = online
            if online:
                self._online_event.set()
            else:
                self._online_event.clear()

        logger.info("Network is back online" if online else "Network went offline")
        self._listeners.emit(online)

    def add_listener(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    def wait_until_online(self, timeout: Optional[float] = None) -> bool:
        """Block until online or the timeout passes; returns the current flag."""
        return self._online_event.wait(timeout)

    def probe(self, url: str, timeout: float = 5) -> bool:
        """Check reachability of ``url`` and update the flag.

        Any HTTP response, even an error status, means the network is up.
        """
        try:
            requests.head(url, timeout=timeout, allow_redirects=False)
            online = True
        except requests.exceptions.RequestException as e:
            logger.debug(f"Connectivity probe to {url} failed: {e}")
            online = False
        self.set_online(online)
        return online
