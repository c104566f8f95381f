"""
auth/models.py -- Domain dataclasses for the local cache, sessions and flows.

Pattern: Data class. Stores and the orchestrator do the work; these only own
shape. FlowResult is the exception: it carries a couple of helpers because it
is the record of what a multi-step remote+local flow actually did.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LocalUserRecord:
    """Cached projection of a remote user plus locally tracked fields.

    remote_user_id is the key and is never rewritten by an upsert. last_login
    is tracked only here; the remote directory does not report it.
    """

    remote_user_id: int
    username: str
    role: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    last_login: Optional[str] = None  # ISO 8601
    updated_at: Optional[str] = None  # ISO 8601, set by store on every write


@dataclass
class RoleChange:
    """One row of the role_changes audit table."""

    remote_user_id: int
    old_role: Optional[str]
    new_role: str
    changed_at: str
    id: Optional[int] = None


@dataclass(frozen=True)
class SessionPayload:
    """What a signed session token carries. Issuance time lives in the JWT claims."""

    username: str
    remote_token: str
    remote_user_id: int
    role: str


@dataclass(frozen=True)
class UserSummary:
    """User-facing summary returned alongside a freshly issued session."""

    id: int
    username: str
    fullname: str
    role: str
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None


@dataclass
class StepOutcome:
    name: str
    ok: bool
    error: Optional[str] = None


@dataclass
class FlowResult:
    """Ordered record of the named steps a flow attempted and how each ended.

    A flow that fails partway raises with its FlowResult attached, so callers
    can tell "nothing happened" apart from "remote changed, local did not".
    """

    flow: str
    steps: list[StepOutcome] = field(default_factory=list)

    def record(self, name: str, ok: bool = True, error: Optional[str] = None) -> StepOutcome:
        outcome = StepOutcome(name=name, ok=ok, error=error)
        self.steps.append(outcome)
        return outcome

    def step(self, name: str) -> Optional[StepOutcome]:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        return None

    def succeeded(self, name: str) -> bool:
        outcome = self.step(name)
        return outcome is not None and outcome.ok

    @property
    def failed_steps(self) -> list[str]:
        return [s.name for s in self.steps if not s.ok]

    @property
    def ok(self) -> bool:
        return not self.failed_steps


@dataclass(frozen=True)
class AuthResult:
    """Outcome of login or register.

    flow.ok is False when the session was issued but a best-effort cache step
    failed -- the primary operation still succeeded.
    """

    access_token: str
    session: SessionPayload
    user: UserSummary
    flow: FlowResult

    @property
    def cache_synced(self) -> bool:
        return self.flow.ok


@dataclass(frozen=True)
class RoleChangeResult:
    success: bool
    role: str
    message: str
    flow: FlowResult
