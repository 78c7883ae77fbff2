"""Main application - keeps the family tree replica in sync and replays offline edits."""
import signal
import sys
import threading

from treesync.logging_conf import logger
from treesync import settings
from treesync.api_client import ApiClient
from treesync.connectivity import ConnectivityMonitor
from treesync.mutations import MutationService
from treesync.queue.action_queue import ActionQueue
from treesync.queue.processor import QueueProcessor
from treesync.sync import channels
from treesync.sync.manager import SyncManager
from treesync.sync.models import ChannelState


class Application:
    """Wires the sync core together and reports what it does."""

    def __init__(self, client=None, connectivity=None, queue=None, admin=True):
        self.client = client or ApiClient()
        self.connectivity = connectivity or ConnectivityMonitor(initial=True)
        self.queue = queue or ActionQueue()
        self.mutations = MutationService(self.client, self.queue, self.connectivity)
        self.processor = QueueProcessor(self.queue, self.connectivity, self.mutations.handlers)
        self.manager = SyncManager(self.client, self.connectivity)
        self.admin = admin
        self.subscriptions = []
        self.running = False
        self._stop_event = threading.Event()
        self._detachers = []

    def start(self):
        """Start the application."""
        logger.info("=" * 50)
        logger.info("Family Tree Sync")
        logger.info("=" * 50)
        logger.info(f"API: {settings.API_URL}")
        logger.info(f"Queue: {self.queue.path} ({self.queue.size()} pending)")
        logger.info(f"Tree poll interval: {settings.TREE_POLL_INTERVAL}s")
        logger.info("=" * 50)

        settings.validate_config()
        self.running = True

        self._detachers = [
            self.queue.on_change(self._on_queue_change),
            self.processor.on_complete(self._on_replay_complete),
            self.manager.on_status(self._on_channel_status),
            self.manager.on_error(self._on_channel_error),
        ]

        self.subscriptions.append(self.manager.subscribe(channels.family_tree_config()))
        if self.admin:
            for config in (
                channels.suggestions_config(),
                channels.permission_requests_config(),
                channels.identity_claims_config(),
            ):
                self.subscriptions.append(self.manager.subscribe(config))

        self.processor.start()
        logger.info("Started - syncing")

    def stop(self):
        """Stop the application."""
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        self.processor.stop()
        self.manager.close_all()
        self.subscriptions = []
        for detach in self._detachers:
            detach()
        self._detachers = []
        logger.info("Stopped")

    def run(self):
        """Main loop: probe connectivity until stopped."""
        self.start()

        while self.running:
            try:
                self.connectivity.probe(settings.API_URL)
                if self.admin:
                    counts = self.manager.get_aggregate_counts(channels.ADMIN_CHANNEL_IDS)
                    logger.debug(f"Pending admin items: {dict(counts)}")
            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
            if self._stop_event.wait(settings.CONNECTIVITY_CHECK_INTERVAL):
                break

        self.stop()

    # Manual controls

    def clear_queue(self):
        self.queue.clear()

    def reconnect(self, channel_id, filter=None):
        return self.manager.reconnect(channel_id, filter)

    # Observers

    def _on_queue_change(self, pending):
        if pending:
            logger.info(f"{pending} actions pending sync")
        else:
            logger.info("All queued actions synced")

    def _on_replay_complete(self, result):
        if result.synced:
            logger.info(f"Synced {result.synced} offline actions")
        if result.failed:
            logger.warning(f"{result.failed} actions failed to sync and were dropped: {result.dropped_ids}")

    def _on_channel_status(self, state, channel_id):
        if state is ChannelState.RECONNECTING:
            logger.warning(f"{channel_id}: connection lost, showing last synced data")

    def _on_channel_error(self, error):
        if not error.recoverable:
            logger.error(f"{error.channel_id}: sync stopped ({error.code}): {error.message}")


def main():
    """Entry point."""
    app = Application()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
