"""Single capability check for visitor records.

Every visitor operation asks `can_access_visitor` (or `ensure_can_access`)
instead of re-deriving role relationships in each route.
"""

from dataclasses import dataclass
from enum import Enum

from church_platform.domain.enums import UserRole
from church_platform.domain.errors import UnauthorizedError


class Capability(str, Enum):
    READ = "read"
    WRITE = "write"
    FEEDBACK = "feedback"


@dataclass(frozen=True)
class Caller:
    """Identity of whoever is making a request."""

    id: str
    role: UserRole
    protocol_team_id: str | None = None

    @classmethod
    def from_user(cls, user) -> "Caller":
        return cls(
            id=user.id,
            role=UserRole(user.role),
            protocol_team_id=user.protocol_team_id,
        )

    @classmethod
    def for_visitor(cls, visitor_id: str) -> "Caller":
        return cls(id=visitor_id, role=UserRole.VISITOR)


def is_caretaker(caller: Caller, visitor) -> bool:
    """Caller is the assigned protocol member or sits on the visitor's team."""
    if visitor.assigned_protocol_member_id and visitor.assigned_protocol_member_id == caller.id:
        return True
    return bool(
        caller.protocol_team_id
        and visitor.protocol_team_id
        and caller.protocol_team_id == visitor.protocol_team_id
    )


def can_access_visitor(caller: Caller, visitor, capability: Capability) -> bool:
    """Decide whether caller may perform capability on visitor.

    - protocol: read/write when caretaker (assigned member or same team)
    - bishop: read anything, write nothing
    - visitor: read self, leave feedback on self
    - leader, member: nothing
    """
    role = UserRole(caller.role)
    if role == UserRole.PROTOCOL:
        return capability in (Capability.READ, Capability.WRITE) and is_caretaker(caller, visitor)
    if role == UserRole.BISHOP:
        return capability == Capability.READ
    if role == UserRole.VISITOR:
        return caller.id == visitor.id and capability in (Capability.READ, Capability.FEEDBACK)
    return False


def ensure_can_access(caller: Caller, visitor, capability: Capability) -> None:
    """Raise UnauthorizedError when the capability check denies."""
    if not can_access_visitor(caller, visitor, capability):
        verb = "view" if capability == Capability.READ else "update"
        raise UnauthorizedError(f"Unauthorized to {verb} this visitor")
