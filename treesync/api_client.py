"""Minimal family tree API client used by the sync core."""
import time
from typing import Any, Dict, List, Optional

import requests

from treesync import settings
from treesync.errors import ApiError
from treesync.logging_conf import logger


class ApiClient:
    """Talks to the family tree API: collection fetches, event streams and mutations."""

    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.timeout = settings.FETCH_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.token = None
        self.set_token(token if token is not None else settings.API_TOKEN)

    def set_token(self, token: Optional[str]) -> None:
        self.token = token
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            self.session.headers.pop("Authorization", None)

    # Collections

    def fetch_collection(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch a full collection. The body may be a bare list or ``{"data": [...]}``."""
        # Channels own their retry schedule, so a fetch makes a single attempt
        result = self._request("GET", endpoint, max_retries=0, params=params)
        if isinstance(result, dict) and "data" in result:
            result = result["data"]
        if result is None:
            return []
        if not isinstance(result, list):
            raise ApiError(f"Expected a list from {endpoint}, got {type(result).__name__}")
        return result

    def get_tree(self) -> List[Dict[str, Any]]:
        return self.fetch_collection("/api/v1/tree")

    def get_suggestions(self, status: str = "pending") -> List[Dict[str, Any]]:
        return self.fetch_collection("/api/v1/admin/suggestions", {"status": status})

    def get_permission_requests(self, status: str = "pending") -> List[Dict[str, Any]]:
        return self.fetch_collection("/api/v1/admin/permission-requests", {"status": status})

    def get_identity_claims(self, status: str = "pending") -> List[Dict[str, Any]]:
        return self.fetch_collection("/api/v1/admin/identity-claims", {"status": status})

    # Event stream

    def stream_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Build a stream URL. The token goes in the query because the push
        transport cannot carry custom headers."""
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.token:
            query["token"] = self.token
        request = requests.Request("GET", f"{self.base_url}{endpoint}", params=query).prepare()
        return request.url

    def open_stream(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Open a long-lived text event stream. The caller owns and must close the response."""
        url = self.stream_url(endpoint, params)
        try:
            response = requests.get(
                url,
                stream=True,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
                timeout=(self.timeout, settings.STREAM_READ_TIMEOUT),
            )
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Cannot open stream {endpoint}: {e}", retryable=True) from e

        if response.status_code != 200:
            response.close()
            raise ApiError(
                f"Stream {endpoint} answered HTTP {response.status_code}",
                status=response.status_code,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )
        if response.encoding is None:
            response.encoding = "utf-8"
        return response

    # Mutations

    def create_person(self, person: Dict[str, Any], parent_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        payload = dict(person)
        if parent_id:
            payload["parent_id"] = parent_id
        return self._request("POST", "/api/v1/tree", json=payload)

    def update_person(self, person_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._request("PUT", f"/api/v1/tree/{person_id}", json=updates)

    def delete_person(self, person_id: str) -> Optional[Dict[str, Any]]:
        return self._request("DELETE", f"/api/v1/tree/{person_id}")

    def create_suggestion(self, suggestion: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._request("POST", "/api/v1/suggestions", json=suggestion)

    def _request(self, method: str, endpoint: str, retry_count: int = 0, max_retries: int = 3, **kwargs) -> Any:
        """Make API request with retry logic."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method=method, url=url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            if retry_count < max_retries and isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
                wait_time = 2 ** retry_count
                time.sleep(wait_time)
                return self._request(method, endpoint, retry_count + 1, max_retries, **kwargs)
            logger.error(f"API request {method} {endpoint} failed: {e}")
            raise ApiError(f"{method} {endpoint} failed: {e}", retryable=True) from e

        if response.status_code == 401:
            self.set_token(None)
            raise ApiError("Unauthorized", status=401)

        if response.status_code == 429 and retry_count < max_retries:
            retry_after = int(response.headers.get("Retry-After", 5))
            logger.warning(f"Rate limited. Waiting {retry_after}s...")
            time.sleep(retry_after)
            return self._request(method, endpoint, retry_count + 1, max_retries, **kwargs)

        if response.status_code >= 500 and retry_count < max_retries:
            wait_time = 2 ** retry_count
            logger.warning(f"Server error {response.status_code}. Retrying in {wait_time}s...")
            time.sleep(wait_time)
            return self._request(method, endpoint, retry_count + 1, max_retries, **kwargs)

        if response.status_code >= 400:
            message = self._error_message(response)
            raise ApiError(
                f"{method} {endpoint} -> HTTP {response.status_code}: {message}",
                status=response.status_code,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {endpoint} returned invalid JSON: {e}") from e

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or "Request failed")
        return "Request failed"
