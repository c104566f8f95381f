"""
tests/test_directory_client.py -- Unit tests for directory/client.py.

The requests.Session is a MagicMock, so these tests assert on exactly what
goes over the wire and on how every failure shape is normalized into
RemoteProtocolFailure.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from core.errors import RemoteProtocolFailure
from directory.client import (
    FN_ASSIGN_ROLES,
    FN_CREATE_USERS,
    FN_GET_USERS_BY_FIELD,
    FN_SITE_INFO,
    RemoteDirectoryClient,
    flatten_params,
)
from directory.models import NewRemoteUser


def _response(body=None, status: int = 200, json_error: bool = False) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if json_error:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(session) -> RemoteDirectoryClient:
    return RemoteDirectoryClient("https://moodle.test/", "admin-token", service="svc", timeout=5, session=session)


def _sent(session: MagicMock) -> tuple[str, dict]:
    args, kwargs = session.post.call_args
    return args[0], dict(kwargs["data"])


class TestFlattenParams:
    def test_role_assignment_example(self) -> None:
        params = {"assignments": [{"roleid": 5, "userid": 7, "contextid": 1}]}
        assert flatten_params(params) == [
            ("assignments[0][roleid]", "5"),
            ("assignments[0][userid]", "7"),
            ("assignments[0][contextid]", "1"),
        ]

    def test_nested_list_of_dicts(self) -> None:
        params = {"users": [{"username": "alice", "email": "a@x"}]}
        assert flatten_params(params) == [("users[0][username]", "alice"), ("users[0][email]", "a@x")]

    def test_scalars_and_lists(self) -> None:
        params = {"field": "id", "values": [3, 7]}
        assert flatten_params(params) == [("field", "id"), ("values[0]", "3"), ("values[1]", "7")]

    def test_bool_and_none(self) -> None:
        assert flatten_params({"a": True, "b": False, "c": None}) == [("a", "1"), ("b", "0"), ("c", "")]

    def test_empty(self) -> None:
        assert flatten_params(None) == []
        assert flatten_params({}) == []


class TestCall:
    def test_posts_function_and_token_to_rest_endpoint(self, client, session) -> None:
        session.post.return_value = _response({"userid": 1})
        assert client.call(FN_SITE_INFO, "user-token") == {"userid": 1}

        url, data = _sent(session)
        assert url == "https://moodle.test/webservice/rest/server.php"
        assert data["wstoken"] == "user-token"
        assert data["wsfunction"] == FN_SITE_INFO
        assert data["moodlewsrestformat"] == "json"
        assert session.post.call_args.kwargs["timeout"] == 5

    def test_200_with_exception_body_is_failure(self, client, session) -> None:
        session.post.return_value = _response(
            {"exception": "moodle_exception", "errorcode": "invalidtoken", "message": "Invalid token"}
        )
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.call(FN_SITE_INFO, "bad")
        failure = exc_info.value
        assert failure.errorcode == "invalidtoken"
        assert failure.exception == "moodle_exception"
        assert failure.status_code == 200
        assert failure.function == FN_SITE_INFO

    def test_non_200_is_failure(self, client, session) -> None:
        session.post.return_value = _response(status=503)
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.call(FN_SITE_INFO, "t")
        assert exc_info.value.errorcode == "http_503"
        assert exc_info.value.status_code == 503

    def test_transport_error_is_failure(self, client, session) -> None:
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.call(FN_SITE_INFO, "t")
        assert exc_info.value.errorcode == "transport_error"
        assert exc_info.value.exception == "ConnectionError"

    def test_timeout_is_failure(self, client, session) -> None:
        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.call(FN_SITE_INFO, "t")
        assert exc_info.value.errorcode == "transport_error"

    def test_non_json_body_is_failure(self, client, session) -> None:
        session.post.return_value = _response(json_error=True)
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.call(FN_SITE_INFO, "t")
        assert exc_info.value.errorcode == "invalid_response"

    def test_null_body_is_success(self, client, session) -> None:
        session.post.return_value = _response(None)
        assert client.call(FN_ASSIGN_ROLES, "t") is None


class TestExchangeCredentials:
    def test_returns_token(self, client, session) -> None:
        session.post.return_value = _response({"token": "abc", "privatetoken": None})
        assert client.exchange_credentials("alice", "pw") == "abc"

        url, data = _sent(session)
        assert url == "https://moodle.test/login/token.php"
        assert data == {"username": "alice", "password": "pw", "service": "svc"}

    def test_error_body_is_failure(self, client, session) -> None:
        session.post.return_value = _response(
            {"error": "Invalid login, please try again", "errorcode": "invalidlogin"}
        )
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.exchange_credentials("alice", "wrong")
        assert exc_info.value.errorcode == "invalidlogin"
        assert exc_info.value.message == "Invalid login, please try again"

    def test_missing_token_is_failure(self, client, session) -> None:
        session.post.return_value = _response({})
        with pytest.raises(RemoteProtocolFailure):
            client.exchange_credentials("alice", "pw")


class TestNamedFunctions:
    def test_create_user_returns_new_id(self, client, session) -> None:
        session.post.return_value = _response([{"id": 42, "username": "alice"}])
        new_user = NewRemoteUser("alice", "Secret1!", "Alice", "Smith", "alice@example.com")

        assert client.create_user(new_user) == 42

        _url, data = _sent(session)
        assert data["wstoken"] == "admin-token"
        assert data["wsfunction"] == FN_CREATE_USERS
        assert data["users[0][username]"] == "alice"
        assert data["users[0][email]"] == "alice@example.com"
        assert data["users[0][auth]"] == "manual"

    def test_create_user_without_id_is_failure(self, client, session) -> None:
        session.post.return_value = _response([])
        with pytest.raises(RemoteProtocolFailure) as exc_info:
            client.create_user(NewRemoteUser("a", "p", "A", "B", "a@b.c"))
        assert exc_info.value.errorcode == "invalid_response"

    def test_assign_role_sends_assignment(self, client, session) -> None:
        session.post.return_value = _response(None)
        client.assign_role(42, 5, 1)

        _url, data = _sent(session)
        assert data["wsfunction"] == FN_ASSIGN_ROLES
        assert data["wstoken"] == "admin-token"
        assert data["assignments[0][roleid]"] == "5"
        assert data["assignments[0][userid]"] == "42"
        assert data["assignments[0][contextid]"] == "1"

    def test_get_user_by_id(self, client, session) -> None:
        session.post.return_value = _response(
            [{"id": 7, "username": "bob", "firstname": "Bob", "lastname": "B", "email": "bob@x", "suspended": 1}]
        )
        user = client.get_user_by_id(7)

        assert user is not None
        assert user.id == 7
        assert user.email == "bob@x"
        assert user.suspended is True
        _url, data = _sent(session)
        assert data["wsfunction"] == FN_GET_USERS_BY_FIELD
        assert data["field"] == "id"
        assert data["values[0]"] == "7"

    def test_get_user_by_id_unknown(self, client, session) -> None:
        session.post.return_value = _response([])
        assert client.get_user_by_id(999) is None
