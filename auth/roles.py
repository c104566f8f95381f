"""
auth/roles.py -- The closed role vocabulary and its mapping to Moodle role ids.

This is the single source of truth for which roles exist and which remote
role id each one grants. Registration (default student role) and explicit role
changes both go through the same RoleAuthority instance, so the two call sites
cannot drift apart.

Remote ids on a stock Moodle install:
  student  -> 5
  teacher  -> 3 (editingteacher) or 4 (non-editing teacher), per deployment
  admin    -> 1 (manager)
  manager  -> 1 (manager)

The mapping is one-way on purpose for admin/manager: both grant Moodle's
manager role, so a remote id of 1 cannot be turned back into one label.
"""

from __future__ import annotations

from enum import Enum

from core.errors import InvalidRole


class Role(str, Enum):
    student = "student"
    teacher = "teacher"
    admin = "admin"
    manager = "manager"


DEFAULT_ROLE = Role.student

_VALID_ROLES: frozenset[str] = frozenset(r.value for r in Role)


class RoleAuthority:
    """Pure mapping between Role labels and remote numeric role ids."""

    def __init__(self, teacher_role_id: int = 3) -> None:
        if teacher_role_id not in (3, 4):
            raise ValueError("teacher_role_id must be 3 or 4")
        self._remote_ids: dict[str, int] = {
            Role.student.value: 5,
            Role.teacher.value: teacher_role_id,
            Role.admin.value: 1,
            Role.manager.value: 1,
        }

    @staticmethod
    def is_valid_role(candidate: object) -> bool:
        """Exact, case-sensitive membership test. Non-strings are never valid."""
        return isinstance(candidate, str) and candidate in _VALID_ROLES

    def require_valid(self, candidate: object) -> Role:
        """Return the Role for candidate or raise InvalidRole."""
        if not self.is_valid_role(candidate):
            raise InvalidRole(str(candidate))
        return Role(candidate)

    def role_to_remote_id(self, role: str | Role) -> int:
        value = role.value if isinstance(role, Role) else role
        if value not in self._remote_ids:
            raise InvalidRole(str(role))
        return self._remote_ids[value]
