"""
api/routes/users.py -- Read and reconcile the local user cache.

Routes:
  GET  /users                 -- cached active users, optional ?field=&value= filter
  POST /users/change-role     -- same flow and contract as POST /auth/change-role
  GET  /users/{user_id}       -- one cached user by remote id
  GET  /users/{user_id}/roles -- role change audit trail, newest first
  POST /users/{user_id}/refresh -- re-read the user from Moodle into the cache

The filter field is checked against an allow-list in LocalUserStore; an
unknown field is ignored and the unfiltered list is returned.

/users/change-role is registered before /users/{user_id} so the literal path
wins over the parameterized one.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from api.models import ChangeRoleRequest, ChangeRoleResponse, LocalUserResponse, RoleChangeResponse
from api.routes.auth import run_change_role
from auth.orchestrator import AuthOrchestrator
from auth.store import LocalUserStore
from core.errors import RemoteProtocolFailure

logger = logging.getLogger("lmsbridge.api.users")

router = APIRouter()


def _not_found(user_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "user_not_found", "message": f"User {user_id} not found."},
    )


@router.get("/users", response_model=list[LocalUserResponse])
def list_users(
    request: Request,
    field: Optional[str] = Query(default=None, max_length=30),
    value: Optional[str] = Query(default=None, max_length=255),
) -> list[LocalUserResponse]:
    """List cached active users ordered by username."""
    store: LocalUserStore = request.app.state.user_store
    return [LocalUserResponse.from_record(r) for r in store.list_users(field, value)]


@router.post("/users/change-role", response_model=ChangeRoleResponse)
def change_role(request: Request, body: ChangeRoleRequest) -> ChangeRoleResponse:
    """Alias of POST /auth/change-role, unauthenticated like it."""
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    return run_change_role(orchestrator, body)


@router.get("/users/{user_id}", response_model=LocalUserResponse)
def get_user(request: Request, user_id: int) -> LocalUserResponse:
    store: LocalUserStore = request.app.state.user_store
    record = store.find_by_remote_id(user_id)
    if record is None:
        raise _not_found(user_id)
    return LocalUserResponse.from_record(record)


@router.get("/users/{user_id}/roles", response_model=list[RoleChangeResponse])
def get_role_history(request: Request, user_id: int) -> list[RoleChangeResponse]:
    """Return every recorded role change for the user, newest first."""
    store: LocalUserStore = request.app.state.user_store
    if store.find_by_remote_id(user_id) is None:
        raise _not_found(user_id)
    return [RoleChangeResponse.from_change(c) for c in store.role_history(user_id)]


@router.post("/users/{user_id}/refresh", response_model=LocalUserResponse)
def refresh_user(request: Request, user_id: int) -> LocalUserResponse:
    """Pull the user's current profile from Moodle and update the cache.

    The cached role is preserved. 404 when Moodle has no such user.
    """
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    try:
        record = orchestrator.refresh_user(user_id)
    except RemoteProtocolFailure as exc:
        logger.warning("Refresh of remote_id=%s failed: %s", user_id, exc.errorcode)
        raise HTTPException(
            status_code=400,
            detail={"code": "remote_error", "message": "Could not refresh user."},
        ) from exc
    if record is None:
        raise _not_found(user_id)
    return LocalUserResponse.from_record(record)
