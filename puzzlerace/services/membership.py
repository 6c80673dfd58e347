"""
Membership reconciliation service.

Owns this device's "my rooms" list and the per-room admin flag, persisted in the
local database. All writes go through one asyncio lock so visit recording and admin
escalation cannot lose each other's updates. Roster mutations are checked locally
for admin privilege first, then sent to the roster store, whose answer is
authoritative. Local state is never changed ahead of the server.
"""

import asyncio
from typing import Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import select

from puzzlerace.data_models.roster import (
    MembershipState, MutationResult, RoomMembershipRecord, normalize_room_id
)
from puzzlerace.database.models import RoomMembership
from puzzlerace.services.base import BaseService
from puzzlerace.services.stores import RosterStore
from puzzlerace.utils.logger import setup_logger
from puzzlerace.utils.race_exceptions import PermissionDenied, RaceException

if TYPE_CHECKING:
    from puzzlerace.services.refresh import RefreshCoordinator

logger = setup_logger(__name__)


class MembershipReconciler(BaseService):
    """Serialized owner of the local room membership records."""

    def __init__(
        self,
        session_factory,
        roster_store: RosterStore,
        refresh_coordinator: Optional["RefreshCoordinator"] = None
    ):
        super().__init__(session_factory)
        self.roster_store = roster_store
        self.refresh_coordinator = refresh_coordinator
        # room_id -> record, in first-visit order; None until first access
        self._records: Optional[Dict[str, RoomMembershipRecord]] = None
        self._write_lock = asyncio.Lock()

    async def _ensure_loaded(self) -> Dict[str, RoomMembershipRecord]:
        """Load records from the database on first access."""
        if self._records is not None:
            return self._records

        async with self._write_lock:
            if self._records is None:
                async def load():
                    async with self.get_session() as session:
                        result = await session.execute(select(RoomMembership).order_by(RoomMembership.id))
                        return [row.to_record() for row in result.scalars().all()]

                records = await self.execute_with_retry(load)
                self._records = {record.room_id: record for record in records}
                logger.info(f"Loaded {len(self._records)} room memberships")
        return self._records

    async def list_my_rooms(self) -> List[RoomMembershipRecord]:
        """All known rooms in first-visit order."""
        records = await self._ensure_loaded()
        return list(records.values())

    async def get_record(self, room_id) -> Optional[RoomMembershipRecord]:
        records = await self._ensure_loaded()
        return records.get(normalize_room_id(room_id))

    async def membership_state(self, room_id) -> MembershipState:
        record = await self.get_record(room_id)
        return record.state if record else MembershipState.UNKNOWN

    async def record_visit(self, room_id) -> RoomMembershipRecord:
        """
        Idempotently record that this device visited a room.

        A new record is a plain member; an existing record, admin or not, is
        returned unchanged.
        """
        return await self._upsert(normalize_room_id(room_id), escalate=False)

    async def mark_admin(self, room_id) -> RoomMembershipRecord:
        """Escalate a room to admin, creating the record when missing. Never downgrades."""
        return await self._upsert(normalize_room_id(room_id), escalate=True)

    async def reconcile_privilege(self, room_id, server_is_admin: bool) -> Optional[RoomMembershipRecord]:
        """
        Merge a server-reported privilege into the local record.

        A True report escalates; a False report is logged and ignored because
        records are never downgraded.
        """
        if server_is_admin:
            return await self.mark_admin(room_id)

        record = await self.get_record(room_id)
        if record is not None and record.is_admin:
            logger.info(f"Room {record.room_id}: server reports no admin privilege, keeping local admin flag")
        return record

    async def _upsert(self, room_id: str, escalate: bool) -> RoomMembershipRecord:
        await self._ensure_loaded()

        async with self._write_lock:
            current = self._records.get(room_id)
            if current is not None and (current.is_admin or not escalate):
                return current

            async def write():
                async with self.get_session() as session:
                    result = await session.execute(
                        select(RoomMembership).where(RoomMembership.room_id == room_id)
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        row = RoomMembership(room_id=room_id, is_admin=escalate)
                        session.add(row)
                    elif escalate:
                        row.is_admin = True
                    return row.to_record()

            record = await self.execute_with_retry(write)
            self._records[room_id] = record

        if current is None:
            logger.info(f"Recorded room {room_id} (admin={record.is_admin})")
        else:
            logger.info(f"Escalated room {room_id} to admin")
        return record

    async def enroll(self, room_id, member_id: int, name: str) -> MutationResult:
        """Ask the server to enroll a member; admins only."""
        room_id = normalize_room_id(room_id)
        return await self._mutate(
            room_id, member_id, "enroll",
            lambda: self.roster_store.enroll(room_id, member_id, name)
        )

    async def unenroll(self, room_id, member_id: int) -> MutationResult:
        """Ask the server to unenroll a member; admins only."""
        room_id = normalize_room_id(room_id)
        return await self._mutate(
            room_id, member_id, "unenroll",
            lambda: self.roster_store.unenroll(room_id, member_id)
        )

    async def _mutate(self, room_id: str, member_id: int, action: str, call) -> MutationResult:
        # Local fast-fail only; the server re-checks authorization
        if await self.membership_state(room_id) != MembershipState.KNOWN_ADMIN:
            logger.warning(f"Room {room_id}: {action} of member {member_id} refused, not an admin")
            return MutationResult(room_id, member_id, action, PermissionDenied(room_id, action))

        try:
            await call()
        except PermissionDenied as e:
            logger.warning(f"Room {room_id}: server refused {action} of member {member_id} despite local admin flag")
            return MutationResult(room_id, member_id, action, e)
        except RaceException as e:
            logger.warning(f"Room {room_id}: {action} of member {member_id} failed: {e}")
            return MutationResult(room_id, member_id, action, e)

        await self.on_roster_mutation_succeeded(room_id)
        return MutationResult(room_id, member_id, action)

    async def on_roster_mutation_succeeded(self, room_id) -> None:
        """Invalidate every cached read (roster, puzzles, completions) for the room."""
        room_id = normalize_room_id(room_id)
        if self.refresh_coordinator is None:
            logger.debug(f"Room {room_id}: no refresh coordinator attached, nothing to invalidate")
            return
        await self.refresh_coordinator.force_invalidate(room_id)
