"""
core/errors.py -- Exception taxonomy shared by directory/, auth/ and api/.

Hierarchy:
  LmsBridgeError
    RemoteProtocolFailure   -- any failed remote call (transport, non-200,
                               or a 200 body carrying exception/errorcode)
    RemoteAuthFailure       -- remote rejected the credential exchange or the
                               freshly issued remote token
    RegistrationFailure     -- user creation flow stopped partway
    RoleChangeFailure       -- role change flow stopped partway
    InvalidRole             -- role outside the closed vocabulary
    InvalidToken            -- session token failed to decode or verify

Flow failures carry the FlowResult reached so far (flow attribute) so callers
and tests can see exactly which steps completed before the failure. Nothing is
rolled back; the step list is the only record of a partial write.

Route handlers map these onto coarse HTTP categories (401 / 400). The remote
detail stays in the logs and on the exception, not in the response body.

Layer rule: core/ is the kernel. No imports from api/, auth/, or directory/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import FlowResult


class LmsBridgeError(Exception):
    """Base class for every error raised by LMS Bridge itself."""


class RemoteProtocolFailure(LmsBridgeError):
    """Structured failure of a single remote function call.

    Transport errors, non-200 responses, undecodable bodies and 200 bodies that
    report an exception all normalize into this one shape so callers never
    branch on where the failure happened.
    """

    def __init__(
        self,
        message: str,
        *,
        errorcode: str | None = None,
        exception: str | None = None,
        status_code: int | None = None,
        function: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.errorcode = errorcode
        self.exception = exception
        self.status_code = status_code
        self.function = function


class _FlowError(LmsBridgeError):
    def __init__(self, message: str, flow: FlowResult | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.flow = flow


class RemoteAuthFailure(_FlowError):
    """Bad credentials, suspended account, or a remote token that fails site-info."""


class RegistrationFailure(_FlowError):
    """Registration stopped partway. flow shows what already happened remotely.

    created_id is set when the remote user was created before the failure,
    i.e. the remote directory now holds a user this system never finished
    setting up.
    """

    def __init__(self, message: str, flow: FlowResult | None = None, created_id: int | None = None) -> None:
        super().__init__(message, flow)
        self.created_id = created_id


class RoleChangeFailure(_FlowError):
    """Role change stopped partway. flow shows whether the local cache already moved."""


class InvalidRole(LmsBridgeError):
    """Role string outside {student, teacher, admin, manager}."""

    def __init__(self, role: str) -> None:
        super().__init__(f"Invalid role: {role!r}")
        self.role = role


class InvalidToken(LmsBridgeError):
    """Session token is malformed, tampered, signed with another key, or expired."""
