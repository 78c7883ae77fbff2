import json
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from treesync.api_client import ApiClient
from treesync.errors import ApiError


def make_response(status=200, body=None, headers=None):
    response = requests.Response()
    response.status_code = status
    response._content = b"" if body is None else json.dumps(body).encode()
    response.headers.update(headers or {})
    return response


@pytest.fixture
def session():
    session = requests.Session()
    session.request = MagicMock()
    return session


@pytest.fixture
def client(session):
    return ApiClient(base_url="https://tree.example/", token="secret", session=session)


def test_token_is_sent_as_bearer_header(client, session):
    assert session.headers["Authorization"] == "Bearer secret"
    assert client.base_url == "https://tree.example"


@pytest.mark.parametrize("body, expected", [
    ([{"id": 1}], [{"id": 1}]),
    ({"data": [{"id": 2}]}, [{"id": 2}]),
    ({"data": None}, []),
])
def test_fetch_collection_unwraps_body(client, session, body, expected):
    session.request.return_value = make_response(body=body)

    assert client.fetch_collection("/api/v1/tree") == expected


def test_fetch_collection_rejects_non_list(client, session):
    session.request.return_value = make_response(body={"id": 1})

    with pytest.raises(ApiError):
        client.fetch_collection("/api/v1/tree")


def test_fetch_collection_makes_a_single_attempt(client, session):
    session.request.return_value = make_response(status=503, body={"error": "down"})

    with pytest.raises(ApiError) as exc:
        client.fetch_collection("/api/v1/admin/suggestions", {"status": "pending"})

    assert exc.value.retryable
    assert exc.value.status == 503
    assert session.request.call_count == 1
    assert session.request.call_args.kwargs["params"] == {"status": "pending"}


def test_unauthorized_clears_token(client, session):
    session.request.return_value = make_response(status=401)

    with pytest.raises(ApiError) as exc:
        client.get_tree()

    assert exc.value.status == 401
    assert not exc.value.retryable
    assert client.token is None
    assert "Authorization" not in session.headers


def test_client_error_is_not_retryable(client, session):
    session.request.return_value = make_response(status=422, body={"error": "name required"})

    with pytest.raises(ApiError) as exc:
        client.create_person({"name": ""})

    assert "name required" in str(exc.value)
    assert not exc.value.retryable


@patch("treesync.api_client.time.sleep")
def test_mutations_retry_server_errors(sleep, client, session):
    session.request.side_effect = [make_response(status=502), make_response(body={"id": "p1"})]

    assert client.update_person("p1", {"bio": "x"}) == {"id": "p1"}
    assert session.request.call_count == 2
    sleep.assert_called_once_with(1)


def test_empty_body_is_empty_dict(client, session):
    session.request.return_value = make_response(status=204)

    assert client.delete_person("p1") == {}


def test_stream_url_carries_token_and_filter(client):
    url = urlparse(client.stream_url("/api/v1/stream/admin", {"status": "pending", "skip": None}))

    assert url.path == "/api/v1/stream/admin"
    assert parse_qs(url.query) == {"status": ["pending"], "token": ["secret"]}


@patch("treesync.api_client.requests.get")
def test_open_stream_rejects_bad_status(get, client):
    response = MagicMock(status_code=503)
    get.return_value = response

    with pytest.raises(ApiError) as exc:
        client.open_stream("/api/v1/stream/admin")

    assert exc.value.retryable
    response.close.assert_called_once()


@patch("treesync.api_client.requests.get")
def test_open_stream_returns_streaming_response(get, client):
    response = MagicMock(status_code=200, encoding=None)
    get.return_value = response

    assert client.open_stream("/api/v1/stream/admin", {"status": "pending"}) is response
    assert response.encoding == "utf-8"
    assert get.call_args.kwargs["stream"] is True
    assert get.call_args.kwargs["headers"]["Accept"] == "text/event-stream"
