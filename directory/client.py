"""
directory/client.py -- Moodle web-service client (the remote directory).

All traffic to the system of record goes through RemoteDirectoryClient:

  call(function, token, params)     -- one named RPC against
                                       {base}/webservice/rest/server.php
  exchange_credentials(user, pw)    -- {base}/login/token.php, returns a
                                       remote session token

Wire format: Moodle's REST server takes form-encoded parameters where nested
structures are spelled with bracket indexes, e.g.

  {"assignments": [{"roleid": 5, "userid": 7}]}
    -> assignments[0][roleid]=5, assignments[0][userid]=7

flatten_params() does that translation, recursively and order-preserving.
Requests are POSTed so passwords never land in a query string or access log.

Failure model: Moodle reports many errors inside a 200 body (an "exception" /
"errorcode" object). Those, non-200 responses, undecodable bodies, and
transport errors all raise the same RemoteProtocolFailure. There are no
retries -- remote mutations are not assumed idempotent at this layer.

Layer rule: imports core/ only. Knows nothing about the local cache or sessions.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from core.errors import RemoteProtocolFailure
from directory.models import NewRemoteUser, RemoteUser

logger = logging.getLogger("lmsbridge.directory")

_REST_PATH = "/webservice/rest/server.php"
_TOKEN_PATH = "/login/token.php"

FN_SITE_INFO = "core_webservice_get_site_info"
FN_GET_COURSES = "core_course_get_courses"
FN_CREATE_USERS = "core_user_create_users"
FN_GET_USERS_BY_FIELD = "core_user_get_users_by_field"
FN_ASSIGN_ROLES = "core_role_assign_roles"


# ---------------------------------------------------------------------------
# Parameter flattening
# ---------------------------------------------------------------------------


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        # Moodle PARAM_BOOL expects 0/1, not "True"/"False"
        return "1" if value else "0"
    return str(value)


def flatten_params(params: dict[str, Any] | None, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Moodle's bracket-indexed key/value pairs.

    Returns a list of (key, value) tuples rather than a dict so insertion order
    and nesting order survive all the way onto the wire.
    """
    pairs: list[tuple[str, str]] = []
    if not params:
        return pairs
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        pairs.extend(_flatten_value(name, value))
    return pairs


def _flatten_value(name: str, value: Any) -> list[tuple[str, str]]:
    if isinstance(value, dict):
        return flatten_params(value, prefix=name)
    if isinstance(value, (list, tuple)):
        pairs: list[tuple[str, str]] = []
        for index, item in enumerate(value):
            pairs.extend(_flatten_value(f"{name}[{index}]", item))
        return pairs
    return [(name, _scalar(value))]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RemoteDirectoryClient:
    """Thin, stateless wrapper over the Moodle REST endpoints.

    Usage:
        client = RemoteDirectoryClient("https://lms.example.edu", admin_token="...")
        info = client.get_site_info(user_token)
        client.close()

    The requests.Session is injectable so tests can hand in a MagicMock and
    assert on exactly what went over the wire.
    """

    def __init__(
        self,
        base_url: str,
        admin_token: str,
        *,
        service: str = "moodle_mobile_app",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._admin_token = admin_token
        self.service = service
        self.timeout = timeout
        self._session = session or requests.Session()
        # Known endpoints; a long redirect chain is never legitimate here.
        self._session.max_redirects = 3

    # ------------------------------------------------------------------
    # Generic RPC
    # ------------------------------------------------------------------

    def call(self, function: str, token: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke a named remote function and return its decoded JSON.

        Raises RemoteProtocolFailure on any failure, whatever its origin.
        """
        data = [
            ("wstoken", token),
            ("wsfunction", function),
            ("moodlewsrestformat", "json"),
            *flatten_params(params),
        ]
        body = self._post(f"{self.base_url}{_REST_PATH}", data, function)
        if isinstance(body, dict) and ("exception" in body or "errorcode" in body):
            failure = RemoteProtocolFailure(
                body.get("message") or "Remote function reported an error",
                errorcode=body.get("errorcode"),
                exception=body.get("exception"),
                status_code=200,
                function=function,
            )
            _log_failure(failure)
            raise failure
        return body

    def exchange_credentials(self, username: str, password: str) -> str:
        """Trade a username/password for a remote session token.

        login/token.php reports bad credentials as {"error": ..., "errorcode": ...}
        inside a 200 response; a body with no token is treated the same way.
        """
        data = [("username", username), ("password", password), ("service", self.service)]
        body = self._post(f"{self.base_url}{_TOKEN_PATH}", data, "login/token")
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            failure = RemoteProtocolFailure(
                (body.get("error") if isinstance(body, dict) else None) or "Credential exchange returned no token",
                errorcode=body.get("errorcode") if isinstance(body, dict) else None,
                exception=body.get("exception") if isinstance(body, dict) else None,
                status_code=200,
                function="login/token",
            )
            _log_failure(failure)
            raise failure
        return token

    def _post(self, url: str, data: list[tuple[str, str]], function: str) -> Any:
        try:
            resp = self._session.post(url, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            failure = RemoteProtocolFailure(
                f"Remote directory unreachable: {exc}",
                errorcode="transport_error",
                exception=type(exc).__name__,
                function=function,
            )
            _log_failure(failure)
            raise failure from exc

        if resp.status_code != 200:
            failure = RemoteProtocolFailure(
                f"Remote directory returned HTTP {resp.status_code}",
                errorcode=f"http_{resp.status_code}",
                status_code=resp.status_code,
                function=function,
            )
            _log_failure(failure)
            raise failure

        try:
            return resp.json()
        except ValueError as exc:
            failure = RemoteProtocolFailure(
                "Remote directory returned a non-JSON body",
                errorcode="invalid_response",
                exception=type(exc).__name__,
                status_code=resp.status_code,
                function=function,
            )
            _log_failure(failure)
            raise failure from exc

    # ------------------------------------------------------------------
    # Named functions
    # ------------------------------------------------------------------

    def get_site_info(self, token: str) -> dict[str, Any]:
        return self.call(FN_SITE_INFO, token)

    def get_courses(self, token: str) -> list[dict[str, Any]]:
        return self.call(FN_GET_COURSES, token)

    def create_user(self, user: NewRemoteUser) -> int:
        """Create one user with the administrative token and return its new remote id."""
        created = self.call(FN_CREATE_USERS, self._admin_token, {"users": [user.to_params()]})
        try:
            return int(created[0]["id"])
        except (IndexError, KeyError, TypeError, ValueError) as exc:
            raise RemoteProtocolFailure(
                "User creation returned no id",
                errorcode="invalid_response",
                exception=type(exc).__name__,
                status_code=200,
                function=FN_CREATE_USERS,
            ) from exc

    def get_user_by_id(self, user_id: int) -> RemoteUser | None:
        found = self.call(FN_GET_USERS_BY_FIELD, self._admin_token, {"field": "id", "values": [user_id]})
        if not found:
            return None
        return RemoteUser.from_user_record(found[0])

    def assign_role(self, user_id: int, role_id: int, context_id: int = 1) -> None:
        """Grant role_id to user_id at context_id. Moodle returns null on success."""
        self.call(
            FN_ASSIGN_ROLES,
            self._admin_token,
            {"assignments": [{"roleid": role_id, "userid": user_id, "contextid": context_id}]},
        )

    def close(self) -> None:
        self._session.close()


def _log_failure(failure: RemoteProtocolFailure) -> None:
    logger.warning(
        "Remote call %s failed: %s (errorcode=%s exception=%s status=%s)",
        failure.function,
        failure.message,
        failure.errorcode,
        failure.exception,
        failure.status_code,
    )
