import asyncio
from datetime import datetime
from typing import List, Optional, Union

from puzzlerace.config import Config
from puzzlerace.data_models.roster import MutationResult, RoomMembershipRecord, normalize_room_id
from puzzlerace.data_models.standings import LoadState, NOT_YET_LOADED, StandingsEntry
from puzzlerace.database.database import Database
from puzzlerace.services.membership import MembershipReconciler
from puzzlerace.services.preferences import PreferenceService
from puzzlerace.services.refresh import RefreshCoordinator
from puzzlerace.services.stores import (
    CompletionStore, HttpCompletionStore, HttpRoomApi, HttpRosterStore, RosterStore
)
from puzzlerace.utils.logger import setup_logger
from puzzlerace.utils.time_parser import format_refresh_age

class PuzzleRaceApp:
    """Wires storage, stores and services together for a presentation layer."""

    def __init__(
        self,
        database: Optional[Database] = None,
        completion_store: Optional[CompletionStore] = None,
        roster_store: Optional[RosterStore] = None,
        refresh_interval: Optional[float] = None,
        fetch_timeout: Optional[float] = None
    ):
        self.db = database or Database()
        self.completion_store = completion_store
        self.roster_store = roster_store
        self.refresh_interval = refresh_interval
        self.fetch_timeout = fetch_timeout
        self.api: Optional[HttpRoomApi] = None
        self.preferences: Optional[PreferenceService] = None
        self.refresh: Optional[RefreshCoordinator] = None
        self.membership: Optional[MembershipReconciler] = None
        self.logger = setup_logger(__name__)

    async def setup(self):
        """Initialize database, preferences and services"""
        self.logger.info("Setting up puzzle race client...")

        await self.db.initialize()

        self.preferences = PreferenceService(self.db.session_factory)
        await self.preferences.load_all()

        if self.completion_store is None or self.roster_store is None:
            session_token = Config.SESSION_TOKEN or self.preferences.get(PreferenceService.SESSION_TOKEN)
            self.api = HttpRoomApi(
                Config.API_BASE_URL,
                session_token=session_token,
                timeout=self.fetch_timeout or Config.FETCH_TIMEOUT_SECONDS
            )
            self.completion_store = self.completion_store or HttpCompletionStore(self.api)
            self.roster_store = self.roster_store or HttpRosterStore(self.api)

        self.refresh = RefreshCoordinator(
            self.completion_store,
            self.roster_store,
            refresh_interval=self.refresh_interval,
            fetch_timeout=self.fetch_timeout
        )
        self.membership = MembershipReconciler(
            self.db.session_factory, self.roster_store, refresh_coordinator=self.refresh
        )

        self.logger.info("Puzzle race client setup complete!")

    async def visit_room(self, room_id) -> RoomMembershipRecord:
        """Record the visit, remember the room and open its view."""
        record = await self.membership.record_visit(room_id)
        await self._switch_to(record.room_id)
        return record

    async def create_room_entry(self, room_id) -> RoomMembershipRecord:
        """Record a room this device just created; its creator administers it."""
        record = await self.membership.mark_admin(room_id)
        await self._switch_to(record.room_id)
        return record

    async def _switch_to(self, room_id: str):
        # Only the room in view keeps refreshing
        for other in self.refresh.open_rooms():
            if other != room_id:
                await self.refresh.close_room(other)
        await self.preferences.set(PreferenceService.ROOM_ID, room_id)
        await self.refresh.open_room(room_id)

    async def leave_room(self, room_id):
        await self.refresh.close_room(room_id)

    async def my_rooms(self) -> List[RoomMembershipRecord]:
        return await self.membership.list_my_rooms()

    def standings(self, room_id) -> Union[List[StandingsEntry], LoadState]:
        return self.refresh.standings(room_id)

    def is_stale(self, room_id) -> bool:
        return self.refresh.is_stale(room_id)

    def last_refreshed_at(self, room_id) -> Optional[datetime]:
        return self.refresh.last_refreshed_at(room_id)

    async def enroll(self, room_id, member_id: int, name: str) -> MutationResult:
        return await self.membership.enroll(room_id, member_id, name)

    async def unenroll(self, room_id, member_id: int) -> MutationResult:
        return await self.membership.unenroll(room_id, member_id)

    def remembered_room(self) -> Optional[str]:
        return self.preferences.get(PreferenceService.ROOM_ID) if self.preferences else None

    def format_standings(self, room_id) -> str:
        """Plain-text standings table with a staleness note."""
        room_id = normalize_room_id(room_id)
        standings = self.standings(room_id)
        if standings is NOT_YET_LOADED:
            return f"Room {room_id}: standings not loaded yet"

        lines = [f"Room {room_id} standings:"]
        width = len(str(len(standings)))
        previous_rank = None
        for entry in standings:
            # Only the first row of a tie block shows its rank
            rank = str(entry.rank) + ")" if entry.rank != previous_rank else ""
            lines.append(f"{rank:>{width + 1}} {entry.score:>5}  {entry.display_name}")
            previous_rank = entry.rank

        refreshed_at = self.last_refreshed_at(room_id)
        if refreshed_at is not None:
            note = f"last refreshed {format_refresh_age(refreshed_at)}"
            if self.is_stale(room_id):
                note = "STALE, " + note
            lines.append(f"({note})")
        return "\n".join(lines)

    async def close(self):
        """Close views, HTTP client and database"""
        if self.refresh:
            await self.refresh.close()
        if self.api:
            await self.api.close()
        await self.db.close()

async def main():
    """Headless watcher: open one room and log its standings every interval"""
    logger = setup_logger('puzzlerace')

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return

    app = PuzzleRaceApp()
    try:
        await app.setup()

        room_id = Config.get_default_room() or app.remembered_room()
        if not room_id:
            logger.error("No room to watch. Set ROOM_ID.")
            return

        await app.visit_room(room_id)
        while True:
            logger.info(app.format_standings(room_id))
            await asyncio.sleep(app.refresh.refresh_interval)
    finally:
        await app.close()

def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    run()
