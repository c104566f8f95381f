"""
directory/models.py -- Dataclasses for records owned by the remote directory.

These mirror what Moodle returns; this system never writes them directly. The
classmethod factories are the only place that knows Moodle's key names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RemoteUser:
    """A user as the remote directory sees it (system of record).

    site_admin is only known when the record came from get_site_info; user
    lookups (core_user_get_users_by_field) do not report it.
    """

    id: int
    username: str
    firstname: str = ""
    lastname: str = ""
    fullname: str = ""
    email: str | None = None
    auth: str = "manual"
    suspended: bool = False
    confirmed: bool = True
    site_admin: bool = False

    @classmethod
    def from_site_info(cls, info: dict[str, Any]) -> RemoteUser:
        """Build from a core_webservice_get_site_info response."""
        return cls(
            id=int(info["userid"]),
            username=info.get("username", ""),
            firstname=info.get("firstname", ""),
            lastname=info.get("lastname", ""),
            fullname=info.get("fullname", ""),
            site_admin=bool(info.get("userissiteadmin", False)),
        )

    @classmethod
    def from_user_record(cls, record: dict[str, Any]) -> RemoteUser:
        """Build from one element of a core_user_get_users_by_field response."""
        firstname = record.get("firstname", "")
        lastname = record.get("lastname", "")
        return cls(
            id=int(record["id"]),
            username=record.get("username", ""),
            firstname=firstname,
            lastname=lastname,
            fullname=record.get("fullname") or f"{firstname} {lastname}".strip(),
            email=record.get("email"),
            auth=record.get("auth", "manual"),
            suspended=bool(record.get("suspended", 0)),
            confirmed=bool(record.get("confirmed", 1)),
        )


@dataclass(frozen=True)
class NewRemoteUser:
    """Payload for core_user_create_users. password never leaves this object except on the wire."""

    username: str
    password: str
    firstname: str
    lastname: str
    email: str
    auth: str = "manual"

    def to_params(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "password": self.password,
            "firstname": self.firstname,
            "lastname": self.lastname,
            "email": self.email,
            "auth": self.auth,
        }
