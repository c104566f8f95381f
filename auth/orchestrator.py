"""
auth/orchestrator.py -- Login, registration, role change and session validation.

AuthOrchestrator is the only component that talks to both systems: the remote
directory (system of record) and the local user cache (projection). Every flow
is a fixed sequence of named steps, remote first, and records each step's
outcome in a FlowResult:

  login        exchange_credentials -> fetch_site_info -> cache_upsert
               -> touch_last_login -> sign_session
  register     create_user -> assign_role -> cache_upsert
               -> exchange_credentials -> sign_session
  change_role  validate_role -> update_local_role -> assign_remote_role

refresh_user() is a single read-then-upsert and carries no FlowResult.

Consistency rules:
  - Remote failures abort the flow and raise with the FlowResult attached.
  - Nothing is compensated. A registration whose role assignment fails leaves
    the new remote user in place; a role change whose remote assignment fails
    leaves the local role already changed. Both are visible on the raised
    error's flow, and both are logged.
  - Cache writes during login and registration are best-effort. A cache
    failure is recorded on the result and logged, never raised: a user the
    remote directory accepts is never locked out by the local database.

Role sources: login derives a binary role from Moodle's site-admin flag
(admin / student) and writes it to the cache, overwriting any finer role set
earlier through change_role. The four-way vocabulary is only reachable via
change_role.

Layer rule: no imports from api/. Collaborators are passed in; nothing is
looked up globally.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.models import (
    AuthResult,
    FlowResult,
    LocalUserRecord,
    RoleChangeResult,
    SessionPayload,
    UserSummary,
)
from auth.roles import DEFAULT_ROLE, Role, RoleAuthority
from auth.store import LocalUserStore
from auth.tokens import SessionTokenCodec
from core.errors import (
    InvalidToken,
    RegistrationFailure,
    RemoteAuthFailure,
    RemoteProtocolFailure,
    RoleChangeFailure,
)
from directory.client import RemoteDirectoryClient
from directory.models import NewRemoteUser, RemoteUser

logger = logging.getLogger("lmsbridge.auth")


class AuthOrchestrator:
    def __init__(
        self,
        directory: RemoteDirectoryClient,
        store: LocalUserStore,
        codec: SessionTokenCodec,
        roles: RoleAuthority,
        *,
        system_context_id: int = 1,
    ) -> None:
        self.directory = directory
        self.store = store
        self.codec = codec
        self.roles = roles
        self.system_context_id = system_context_id

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> AuthResult:
        """Authenticate against the remote directory and issue a session.

        Raises RemoteAuthFailure if either remote step fails. The cache is not
        touched in that case.
        """
        flow = FlowResult("login")

        try:
            remote_token = self.directory.exchange_credentials(username, password)
        except RemoteProtocolFailure as exc:
            flow.record("exchange_credentials", ok=False, error=exc.errorcode)
            logger.info("Login rejected for %r: %s", username, exc.errorcode)
            raise RemoteAuthFailure("Invalid username or password.", flow) from exc
        flow.record("exchange_credentials")

        try:
            info = self.directory.get_site_info(remote_token)
            remote_user = RemoteUser.from_site_info(info)
        except (RemoteProtocolFailure, KeyError, TypeError, ValueError) as exc:
            flow.record("fetch_site_info", ok=False, error=_describe(exc))
            logger.warning("Site info failed right after token exchange for %r: %s", username, _describe(exc))
            raise RemoteAuthFailure("Remote session could not be verified.", flow) from exc
        flow.record("fetch_site_info")

        role = Role.admin if remote_user.site_admin else Role.student
        if remote_user.username:
            username = remote_user.username

        self._best_effort(flow, "cache_upsert", lambda: self.store.upsert(remote_user, role.value))
        self._best_effort(flow, "touch_last_login", lambda: self.store.touch_last_login(remote_user.id))

        session = SessionPayload(
            username=username,
            remote_token=remote_token,
            remote_user_id=remote_user.id,
            role=role.value,
        )
        access_token = self.codec.sign(session)
        flow.record("sign_session")
        logger.info(
            "Login ok for %r (remote_id=%s role=%s cache_synced=%s)", username, remote_user.id, role.value, flow.ok
        )
        return AuthResult(
            access_token=access_token,
            session=session,
            user=UserSummary(
                id=remote_user.id,
                username=username,
                fullname=remote_user.fullname or f"{remote_user.firstname} {remote_user.lastname}".strip(),
                role=role.value,
            ),
            flow=flow,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, new_user: NewRemoteUser) -> AuthResult:
        """Create the user remotely, grant the default role, cache it, and log in.

        Raises RegistrationFailure on any remote error. If the failure comes
        after create_user, the remote user already exists and is left as is;
        flow.step("create_user") and the created_id attribute show it.
        """
        flow = FlowResult("register")

        try:
            remote_id = self.directory.create_user(new_user)
        except RemoteProtocolFailure as exc:
            flow.record("create_user", ok=False, error=exc.errorcode)
            raise RegistrationFailure("Could not register user.", flow) from exc
        flow.record("create_user")
        logger.info("Created remote user %r (remote_id=%s)", new_user.username, remote_id)

        try:
            self.directory.assign_role(remote_id, self.roles.role_to_remote_id(DEFAULT_ROLE), self.system_context_id)
        except RemoteProtocolFailure as exc:
            flow.record("assign_role", ok=False, error=exc.errorcode)
            logger.error(
                "Remote user %s created but default role assignment failed; user left without role",
                remote_id,
            )
            raise RegistrationFailure("Could not register user.", flow, created_id=remote_id) from exc
        flow.record("assign_role")

        remote_user = RemoteUser(
            id=remote_id,
            username=new_user.username,
            firstname=new_user.firstname,
            lastname=new_user.lastname,
            fullname=f"{new_user.firstname} {new_user.lastname}".strip(),
            email=new_user.email,
            auth=new_user.auth,
        )
        self._best_effort(flow, "cache_upsert", lambda: self.store.upsert(remote_user, DEFAULT_ROLE.value))

        try:
            remote_token = self.directory.exchange_credentials(new_user.username, new_user.password)
        except RemoteProtocolFailure as exc:
            flow.record("exchange_credentials", ok=False, error=exc.errorcode)
            logger.error("Remote user %s registered but automatic login failed", remote_id)
            raise RegistrationFailure("Could not register user.", flow, created_id=remote_id) from exc
        flow.record("exchange_credentials")

        session = SessionPayload(
            username=new_user.username,
            remote_token=remote_token,
            remote_user_id=remote_id,
            role=DEFAULT_ROLE.value,
        )
        access_token = self.codec.sign(session)
        flow.record("sign_session")
        return AuthResult(
            access_token=access_token,
            session=session,
            user=UserSummary(
                id=remote_id,
                username=new_user.username,
                fullname=remote_user.fullname,
                role=DEFAULT_ROLE.value,
                email=new_user.email,
                firstname=new_user.firstname,
                lastname=new_user.lastname,
            ),
            flow=flow,
        )

    # ------------------------------------------------------------------
    # Role change
    # ------------------------------------------------------------------

    def change_role(self, remote_user_id: int, new_role: str) -> RoleChangeResult:
        """Change a user's role locally, then remotely.

        InvalidRole is raised before any local or remote call. A remote
        failure raises RoleChangeFailure after the local write has already
        committed; flow.succeeded("update_local_role") tells whether the cache
        moved. No retry, no rollback.
        """
        flow = FlowResult("change_role")
        role = self.roles.require_valid(new_role)
        flow.record("validate_role")

        try:
            with self.store.transaction() as conn:
                current = self.store.find_by_remote_id(remote_user_id, conn=conn)
                updated = self.store.update_role(remote_user_id, role.value, conn=conn)
                if updated:
                    self.store.record_role_change(
                        remote_user_id, current.role if current else None, role.value, conn=conn
                    )
        except SQLAlchemyError as exc:
            flow.record("update_local_role", ok=False, error=type(exc).__name__)
            logger.exception("Local role update failed for remote_id=%s", remote_user_id)
            raise RoleChangeFailure("Could not change the user's role.", flow) from exc
        if updated:
            flow.record("update_local_role")
        else:
            # Not cached yet. The remote directory is still authoritative, so carry on.
            flow.record("update_local_role", ok=False, error="not_cached")

        try:
            self.directory.assign_role(remote_user_id, self.roles.role_to_remote_id(role), self.system_context_id)
        except RemoteProtocolFailure as exc:
            flow.record("assign_remote_role", ok=False, error=exc.errorcode)
            if updated:
                logger.error(
                    "Role for remote_id=%s changed locally to %s but remote assignment failed; cache diverged",
                    remote_user_id,
                    role.value,
                )
            raise RoleChangeFailure("Could not change the user's role.", flow) from exc
        flow.record("assign_remote_role")

        logger.info("Role for remote_id=%s changed to %s", remote_user_id, role.value)
        return RoleChangeResult(success=True, role=role.value, message=f"Role updated to {role.value}", flow=flow)

    # ------------------------------------------------------------------
    # Session validation
    # ------------------------------------------------------------------

    def validate_token(self, token: str) -> SessionPayload | None:
        """Return the session payload if the token verifies and its remote token is still live.

        Fails closed: any decode failure and any remote failure return None.
        A remote outage therefore looks exactly like a revoked session.
        """
        try:
            payload = self.codec.verify(token)
        except InvalidToken as exc:
            logger.debug("Session token rejected: %s", exc)
            return None
        try:
            self.directory.get_site_info(payload.remote_token)
        except RemoteProtocolFailure as exc:
            logger.info("Remote session for %r no longer valid: %s", payload.username, exc.errorcode)
            return None
        return payload

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def refresh_user(self, remote_user_id: int) -> LocalUserRecord | None:
        """Pull one user's profile from the remote directory into the cache.

        The cached role is kept (remote lookups do not report a role label);
        a user seen for the first time is cached as a student. Returns None
        when the remote directory has no such user. Remote errors propagate
        as RemoteProtocolFailure.
        """
        remote_user = self.directory.get_user_by_id(remote_user_id)
        if remote_user is None:
            return None
        cached = self.store.find_by_remote_id(remote_user_id)
        role = cached.role if cached else DEFAULT_ROLE.value
        return self.store.upsert(remote_user, role)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _best_effort(flow: FlowResult, name: str, action) -> None:
        try:
            action()
        except SQLAlchemyError as exc:
            flow.record(name, ok=False, error=type(exc).__name__)
            logger.warning("Cache step %s failed during %s: %s", name, flow.flow, exc)
            return
        flow.record(name)


def _describe(exc: Exception) -> str:
    if isinstance(exc, RemoteProtocolFailure):
        return exc.errorcode or exc.message
    return type(exc).__name__
