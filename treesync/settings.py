"""Configuration for the family tree sync client."""
import os
from pathlib import Path
from urllib.parse import urlparse
from dotenv import load_dotenv

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent
LOGS_DIR = Path(os.getenv("LOGS_DIR", BASE_DIR / "logs"))
LOGS_DIR.mkdir(parents=True, exist_ok=True)
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BETTERSTACK_SOURCE_TOKEN = os.getenv("BETTERSTACK_SOURCE_TOKEN")
BETTERSTACK_INGEST_HOST = os.getenv("BETTERSTACK_INGEST_HOST")

# API
API_URL = os.getenv("API_URL", "http://localhost:8080").rstrip("/")
API_TOKEN = os.getenv("API_TOKEN")
FETCH_TIMEOUT = int(os.getenv("FETCH_TIMEOUT", "30"))  # upper bound for any single fetch
STREAM_READ_TIMEOUT = int(os.getenv("STREAM_READ_TIMEOUT", "60"))  # silence longer than this is a drop

# Offline queue
QUEUE_KEY = os.getenv("QUEUE_KEY", "offline_action_queue")
QUEUE_FILE = DATA_DIR / f"{QUEUE_KEY}.json"
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
SETTLE_DELAY = float(os.getenv("SETTLE_DELAY", "1"))  # seconds online before replaying
STARTUP_SYNC_DELAY = float(os.getenv("STARTUP_SYNC_DELAY", "2"))

# Channels
TREE_POLL_INTERVAL = float(os.getenv("TREE_POLL_INTERVAL", "5"))
ADMIN_POLL_INTERVAL = float(os.getenv("ADMIN_POLL_INTERVAL", "30"))
RECONNECT_DELAY = float(os.getenv("RECONNECT_DELAY", "3"))
MAX_RECONNECT_DELAY = float(os.getenv("MAX_RECONNECT_DELAY", "30"))
MAX_RECONNECT_ATTEMPTS = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "0"))  # 0 = retry forever
POLL_FAILURE_THRESHOLD = int(os.getenv("POLL_FAILURE_THRESHOLD", "3"))

# Runner
CONNECTIVITY_CHECK_INTERVAL = int(os.getenv("CONNECTIVITY_CHECK_INTERVAL", "10"))


def validate_config():
    """Validate required configuration."""
    errors = []

    parsed = urlparse(API_URL)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(f"API_URL must be an http(s) URL: {API_URL}")

    positive = {
        "MAX_RETRIES": MAX_RETRIES,
        "FETCH_TIMEOUT": FETCH_TIMEOUT,
        "STREAM_READ_TIMEOUT": STREAM_READ_TIMEOUT,
        "TREE_POLL_INTERVAL": TREE_POLL_INTERVAL,
        "ADMIN_POLL_INTERVAL": ADMIN_POLL_INTERVAL,
        "RECONNECT_DELAY": RECONNECT_DELAY,
        "MAX_RECONNECT_DELAY": MAX_RECONNECT_DELAY,
        "POLL_FAILURE_THRESHOLD": POLL_FAILURE_THRESHOLD,
        "CONNECTIVITY_CHECK_INTERVAL": CONNECTIVITY_CHECK_INTERVAL,
    }
    for name, value in positive.items():
        if value <= 0:
            errors.append(f"{name} must be positive: {value}")

    if MAX_RECONNECT_ATTEMPTS < 0:
        errors.append(f"MAX_RECONNECT_ATTEMPTS must be >= 0: {MAX_RECONNECT_ATTEMPTS}")

    if MAX_RECONNECT_DELAY < RECONNECT_DELAY:
        errors.append("MAX_RECONNECT_DELAY must not be smaller than RECONNECT_DELAY")

    try:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        errors.append(f"Cannot create DATA_DIR: {e}")

    if errors:
        raise ValueError("Config errors:\n  " + "\n  ".join(errors))
