"""
Roster and membership data models.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class Member:
    """A participant known to a room's roster."""
    member_id: int
    name: str
    enrolled_at: Optional[str] = None


@dataclass(frozen=True)
class Roster:
    """Server view of who may take part in a room and who currently does."""
    eligible: Tuple[Member, ...] = ()
    enrolled: Tuple[Member, ...] = ()

    @property
    def enrolled_ids(self) -> FrozenSet[int]:
        return frozenset(member.member_id for member in self.enrolled)

    def is_enrolled(self, member_id: int) -> bool:
        return member_id in self.enrolled_ids


class MembershipState(Enum):
    """This device's knowledge of its membership in a room."""
    UNKNOWN = "unknown"
    KNOWN_MEMBER = "known_member"
    KNOWN_ADMIN = "known_admin"


@dataclass(frozen=True)
class RoomMembershipRecord:
    """Locally persisted "my rooms" entry."""
    room_id: str
    is_admin: bool = False

    @property
    def state(self) -> MembershipState:
        return MembershipState.KNOWN_ADMIN if self.is_admin else MembershipState.KNOWN_MEMBER


@dataclass(frozen=True)
class MutationResult:
    """Outcome of an enroll/unenroll request."""
    room_id: str
    member_id: int
    action: str
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_room_id(room_id) -> str:
    """Room ids are opaque strings; integers and padded input are accepted."""
    normalized = str(room_id).strip()
    if not normalized:
        raise ValueError("room_id must not be empty")
    return normalized
