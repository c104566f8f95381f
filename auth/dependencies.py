"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

Sessions arrive as "Authorization: Bearer <token>". Every check goes through
AuthOrchestrator.validate_token(), which verifies the signature and then asks
the remote directory whether the embedded remote token is still live. There is
no cookie and no local revocation list.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import SessionPayload
from auth.orchestrator import AuthOrchestrator
from auth.tokens import extract_bearer_token


def try_get_current_session(request: Request) -> SessionPayload | None:
    """Authenticate the request via its Bearer token. Never raises."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    return orchestrator.validate_token(token)


def get_current_session(request: Request) -> SessionPayload:
    """Require a live session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: SessionPayload = Depends(get_current_session)): ...
    """
    session = try_get_current_session(request)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
