"""
api/routes/auth.py -- Authentication endpoints.

Routes:
  POST /auth/login         -- remote credential exchange; returns a session token
  POST /auth/register      -- create the user in Moodle, grant student, log in
  POST /auth/change-role   -- change a user's role locally and in Moodle
  GET  /auth/courses       -- Moodle course list for the session's remote token
  GET  /auth/me            -- the validated session

Error mapping:
  RemoteAuthFailure                      -> 401 bad_credentials
  RegistrationFailure                    -> 400 registration_failed
  InvalidRole                            -> 400 invalid_role
  RoleChangeFailure                      -> 400 role_change_failed
  RemoteProtocolFailure (courses)        -> 400 remote_error
Remote error detail is logged by the orchestrator and directory client; it is
never echoed back to the client.

Security:
  POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries a session token.
  POST /auth/change-role is NOT authenticated. That matches the deployed
  behavior clients depend on, and it lets any caller grant any role; putting
  it behind an admin session is a pending product decision.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangeRoleRequest,
    ChangeRoleResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
)
from auth.dependencies import get_current_session
from auth.models import SessionPayload
from auth.orchestrator import AuthOrchestrator
from core.config import get_settings
from core.errors import InvalidRole, RegistrationFailure, RemoteAuthFailure, RemoteProtocolFailure, RoleChangeFailure
from directory.models import NewRemoteUser

# Auth policy:
# - POST /auth/login:        public
# - POST /auth/register:     public
# - POST /auth/change-role:  public (known gap, see module docstring)
# - GET  /auth/courses:      requires a live session (get_current_session)
# - GET  /auth/me:           requires a live session (get_current_session)
router = APIRouter()

_LOGIN_LIMIT = get_settings().login_rate_limit


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_LOGIN_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange Moodle credentials for a session token.

    Wrong username, wrong password, suspended account and a remote token that
    fails site-info all produce the same 401.
    """
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    try:
        result = orchestrator.login(body.username, body.password)
    except RemoteAuthFailure as exc:
        return _no_store(
            JSONResponse(
                status_code=401,
                content={"error": {"code": "bad_credentials", "message": exc.message}},
            )
        )
    return _no_store(JSONResponse(status_code=200, content=AuthResponse.from_result(result).model_dump()))


@limiter.limit(_LOGIN_LIMIT)
@router.post("/auth/register", response_model=AuthResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a Moodle account with the student role and return a session for it."""
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    new_user = NewRemoteUser(
        username=body.username,
        password=body.password,
        firstname=body.firstname,
        lastname=body.lastname,
        email=str(body.email),
    )
    try:
        result = orchestrator.register(new_user)
    except RegistrationFailure:
        return _no_store(
            JSONResponse(
                status_code=400,
                content={"error": {"code": "registration_failed", "message": "Could not register user."}},
            )
        )
    return _no_store(JSONResponse(status_code=200, content=AuthResponse.from_result(result).model_dump()))


@router.post("/auth/change-role", response_model=ChangeRoleResponse)
def change_role(request: Request, body: ChangeRoleRequest) -> ChangeRoleResponse:
    """Change a user's role. See module docstring: this endpoint is unauthenticated."""
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    return run_change_role(orchestrator, body)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/courses")
def list_courses(request: Request, session: SessionPayload = Depends(get_current_session)) -> list[dict]:
    """Return the Moodle course list visible to the session's remote token."""
    orchestrator: AuthOrchestrator = request.app.state.orchestrator
    try:
        return orchestrator.directory.get_courses(session.remote_token)
    except RemoteProtocolFailure as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "remote_error", "message": "Could not load courses."},
        ) from exc


@router.get("/auth/me", response_model=MeResponse)
def me(session: SessionPayload = Depends(get_current_session)) -> MeResponse:
    """Return identity information for the current session."""
    return MeResponse(user_id=session.remote_user_id, username=session.username, role=session.role)


# ---------------------------------------------------------------------------
# Shared with api/routes/users.py
# ---------------------------------------------------------------------------


def run_change_role(orchestrator: AuthOrchestrator, body: ChangeRoleRequest) -> ChangeRoleResponse:
    """Run the role-change flow and map its failures to 400."""
    try:
        result = orchestrator.change_role(body.userId, body.newRole)
    except InvalidRole as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_role", "message": f"Invalid role: {exc.role}"},
        ) from exc
    except RoleChangeFailure as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "role_change_failed", "message": exc.message},
        ) from exc
    return ChangeRoleResponse(success=result.success, message=result.message, role=result.role)
