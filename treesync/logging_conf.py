"""Root logger setup for the sync client.

Records go to stdout, to a rotating file under ``LOGS_DIR`` and, when a
source token is configured, to Betterstack. Channel and processor threads
are named, so the format carries the thread name.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from logtail import LogtailHandler

from treesync import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"


def setup_logging():
    root_logger = logging.getLogger()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)
    root_logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # Sync history survives restarts; 5 x 10 MB
    sync_log = RotatingFileHandler(settings.LOGS_DIR / "treesync.log", maxBytes=10 * 1024 * 1024, backupCount=5)
    sync_log.setLevel(logging.INFO)
    sync_log.setFormatter(formatter)
    root_logger.addHandler(sync_log)

    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            logtail_kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
            if settings.BETTERSTACK_INGEST_HOST:
                logtail_kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
            remote = LogtailHandler(**logtail_kwargs)
            remote.setLevel(logging.DEBUG)
            remote.setFormatter(formatter)
            root_logger.addHandler(remote)
            root_logger.info(f"Shipping sync logs to Betterstack ({settings.BETTERSTACK_INGEST_HOST or 'default host'})")
        except Exception as e:
            root_logger.warning(f"Betterstack log shipping disabled: {e}")

    # Stream connections reopen often; keep connection-pool chatter out of the sync log
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logging.getLogger("treesync")


logger = setup_logging()
