"""
Tests for the requests-based fetcher.
"""
from unittest.mock import Mock

import pytest
import requests

from readthrough.cache import FetchFailed, Operation
from readthrough.http_client import HttpFetcher


def fake_response(status_code=200, body=b'{"value": 2}'):
    response = requests.Response()
    response.status_code = status_code
    response._content = body
    return response


@pytest.fixture
def session():
    session = Mock(spec=requests.Session)
    session.request.return_value = fake_response()
    return session


class TestHttpFetcher:
    """Mapping operations to HTTP calls and errors to FetchFailed."""

    def test_read_is_a_get(self, session):
        fetcher = HttpFetcher(base_url="http://remote/", session=session, timeout=3, token=None)

        result = fetcher(Operation.READ, "/items/1", {"params": {"full": 1}})

        assert result == {"value": 2}
        session.request.assert_called_once_with(
            "GET",
            "http://remote/items/1",
            headers={"Accept": "application/json"},
            params={"full": 1},
            json=None,
            timeout=3,
        )

    @pytest.mark.parametrize("operation, method", [
        (Operation.CREATE, "POST"),
        (Operation.UPDATE, "PUT"),
        (Operation.PATCH, "PATCH"),
        (Operation.DELETE, "DELETE"),
    ])
    def test_write_methods(self, session, operation, method):
        fetcher = HttpFetcher(base_url="http://remote", session=session, token=None)

        fetcher(operation, "/items/1", {"data": {"value": 5}})

        args, kwargs = session.request.call_args
        assert args == (method, "http://remote/items/1")
        assert kwargs["json"] == {"value": 5}

    def test_token_sets_authorization(self, session):
        fetcher = HttpFetcher(base_url="http://remote", session=session, token="secret")

        fetcher(Operation.READ, "/items/1", {"headers": {"X-Trace": "abc"}})

        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret"
        assert headers["X-Trace"] == "abc"

    def test_absolute_targets_are_used_as_is(self, session):
        fetcher = HttpFetcher(base_url="http://remote", session=session, token=None)

        fetcher(Operation.READ, "https://elsewhere/items/1", {})

        assert session.request.call_args.args[1] == "https://elsewhere/items/1"

    def test_error_status_raises_fetch_failed(self, session):
        session.request.return_value = fake_response(400, b'{"value": "Feed me numbers"}')
        fetcher = HttpFetcher(base_url="http://remote", session=session, token=None)

        with pytest.raises(FetchFailed) as excinfo:
            fetcher(Operation.READ, "/value-plus-one/x", {})

        assert excinfo.value.status_code == 400
        assert excinfo.value.payload == {"value": "Feed me numbers"}
        assert excinfo.value.target == "/value-plus-one/x"

    def test_transport_error_raises_fetch_failed(self, session):
        session.request.side_effect = requests.ConnectionError("refused")
        fetcher = HttpFetcher(base_url="http://remote", session=session, token=None)

        with pytest.raises(FetchFailed) as excinfo:
            fetcher(Operation.READ, "/items/1", {})

        assert excinfo.value.status_code is None

    def test_non_json_and_empty_bodies(self, session):
        fetcher = HttpFetcher(base_url="http://remote", session=session, token=None)

        session.request.return_value = fake_response(200, b"plain text")
        assert fetcher(Operation.READ, "/text", {}) == "plain text"

        session.request.return_value = fake_response(204, b"")
        assert fetcher(Operation.DELETE, "/items/1", {}) is None
