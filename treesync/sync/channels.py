"""Predefined channel configurations for the family tree service."""
from typing import Any, Dict, Optional

from treesync import settings
from treesync.sync.models import ChannelConfig, Strategy

FAMILY_TREE = "family-tree"
SUGGESTIONS = "admin:suggestions"
PERMISSION_REQUESTS = "admin:permission_requests"
IDENTITY_CLAIMS = "admin:identity_claims"

ADMIN_CHANNEL_IDS = (SUGGESTIONS, PERMISSION_REQUESTS, IDENTITY_CLAIMS)

ADMIN_STREAM_ENDPOINT = "/api/v1/stream/admin"

PERSON_TEXT_FIELDS = ("name", "role", "birth", "location", "avatar", "bio")


def normalize_person(person: Dict[str, Any]) -> Dict[str, Any]:
    """Fill optional person fields so consumers never see them missing."""
    normalized = dict(person)
    if not isinstance(normalized.get("children"), list):
        normalized["children"] = []
    for name in PERSON_TEXT_FIELDS:
        if normalized.get(name) is None:
            normalized[name] = ""
    return normalized


def family_tree_config(interval: Optional[float] = None) -> ChannelConfig:
    return ChannelConfig(
        channel_id=FAMILY_TREE,
        strategy=Strategy.POLLING,
        endpoint="/api/v1/tree",
        poll_interval=interval or settings.TREE_POLL_INTERVAL,
        normalize=normalize_person,
    )


def admin_stream_config(channel_id: str, status: Optional[str] = "pending") -> ChannelConfig:
    """Event stream config for one collection on the shared admin stream."""
    return ChannelConfig(
        channel_id=channel_id,
        strategy=Strategy.EVENT_STREAM,
        endpoint=ADMIN_STREAM_ENDPOINT,
        filter=status,
    )


def suggestions_config(status: Optional[str] = "pending") -> ChannelConfig:
    return admin_stream_config(SUGGESTIONS, status)


def permission_requests_config(status: Optional[str] = "pending") -> ChannelConfig:
    return admin_stream_config(PERMISSION_REQUESTS, status)


def identity_claims_config(status: Optional[str] = "pending") -> ChannelConfig:
    return admin_stream_config(IDENTITY_CLAIMS, status)


def admin_listing_config(collection: str, status: Optional[str] = "pending",
                         interval: Optional[float] = None) -> ChannelConfig:
    """Polling config for an administrative listing, e.g. ``permission-requests``."""
    return ChannelConfig(
        channel_id=f"admin-listing:{collection}",
        strategy=Strategy.POLLING,
        endpoint=f"/api/v1/admin/{collection}",
        filter=status,
        poll_interval=interval or settings.ADMIN_POLL_INTERVAL,
    )
