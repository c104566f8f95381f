"""
auth/tokens.py -- Session token signing and verification.

Security design decisions:
  JWT: python-jose with HS256. A session token carries the username (sub),
       the remote Moodle token, the remote user id and the coarse role, plus
       iat/exp. It is signed, not encrypted: the remote token inside is
       readable by whoever holds the session, which is the same party that
       logged in with it.

  Revocation: there is no local revocation list. exp bounds how long a token
       is accepted at all; AuthOrchestrator.validate_token() additionally
       re-checks the embedded remote token against Moodle on every request,
       so a revoked or expired remote token kills the session immediately.

  Failure: verify() raises InvalidToken for anything that does not decode to
       a complete payload -- wrong signature, tampered bytes, expired, missing
       claims. Callers that want fail-closed booleans catch it.

The codec is constructed explicitly with its secret (see api/main.py lifespan);
there is no module-level key.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SessionPayload
from core.errors import InvalidToken

logger = logging.getLogger("lmsbridge.auth.tokens")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "remote_token", "user_id", "role")


class SessionTokenCodec:
    """Sign and verify session tokens.

    Usage:
        codec = SessionTokenCodec(settings.secret_key, expire_seconds=3600)
        token = codec.sign(SessionPayload("alice", "abc123", 42, "student"))
        payload = codec.verify(token)   # raises InvalidToken on failure
    """

    def __init__(self, secret_key: str, *, algorithm: str = _ALGORITHM, expire_seconds: int = 8 * 3600) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.expire_seconds = expire_seconds

    def sign(self, payload: SessionPayload, *, now: datetime | None = None) -> str:
        """Encode payload as a signed JWT. Deterministic for a given payload, secret and time."""
        issued = now or datetime.now(timezone.utc)
        claims = {
            "sub": payload.username,
            "remote_token": payload.remote_token,
            "user_id": payload.remote_user_id,
            "role": payload.role,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(seconds=self.expire_seconds)).timestamp()),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> SessionPayload:
        """Decode and verify token, returning its payload or raising InvalidToken."""
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc
        if not _has_canonical_signature(token):
            raise InvalidToken("Session token signature is not canonically encoded")
        if any(claim not in claims for claim in _REQUIRED_CLAIMS):
            raise InvalidToken("Session token is missing required claims")
        try:
            return SessionPayload(
                username=claims["sub"],
                remote_token=claims["remote_token"],
                remote_user_id=int(claims["user_id"]),
                role=claims["role"],
            )
        except (TypeError, ValueError) as exc:
            raise InvalidToken("Session token claims are malformed") from exc


def _has_canonical_signature(token: str) -> bool:
    """True if the signature segment re-encodes to exactly itself.

    The last base64url character of an HS256 signature carries two unused
    bits, so several spellings decode to the same bytes. Only the one that
    sign() produces is accepted.
    """
    signature = token.rsplit(".", 1)[-1]
    try:
        raw = base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
    except binascii.Error:
        return False
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == signature


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token.strip()
