"""
Completion and roster stores.

The stores are the only code that talks to the room API. They translate payloads
into data models and failures into the typed exceptions of race_exceptions;
callers never see an httpx error.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from puzzlerace.constants import HttpConstants, RefreshConstants
from puzzlerace.data_models.puzzle import Part, Puzzle
from puzzlerace.data_models.roster import Member, Roster
from puzzlerace.data_models.standings import CompletionEvent, CompletionSnapshot
from puzzlerace.utils.logger import setup_logger
from puzzlerace.utils.puzzles import PuzzleCalendar
from puzzlerace.utils.race_exceptions import DataUnavailable, MutationConflict, PermissionDenied

logger = setup_logger(__name__)


class CompletionStore(ABC):
    """Pull source of per-room completion events."""

    @abstractmethod
    async def fetch_completions(self, room_id: str) -> CompletionSnapshot:
        """Return a fresh snapshot or raise DataUnavailable."""
        pass


class RosterStore(ABC):
    """Server-side roster of a room and its mutations."""

    @abstractmethod
    async def fetch_roster(self, room_id: str) -> Roster:
        pass

    @abstractmethod
    async def fetch_puzzles(self, room_id: str) -> Tuple[Puzzle, ...]:
        pass

    @abstractmethod
    async def enroll(self, room_id: str, member_id: int, name: str) -> None:
        """Raise PermissionDenied, MutationConflict or DataUnavailable on failure."""
        pass

    @abstractmethod
    async def unenroll(self, room_id: str, member_id: int) -> None:
        pass


def parse_completion_payload(payload: Any, room_id: str) -> CompletionSnapshot:
    """
    Build a snapshot from ``{memberId: [entry, ...]}``.

    Entries are ``[year, day, part, timestamp]`` lists or objects with those keys.
    Structurally broken entries are dropped with a warning; timestamps stay raw so
    the scoring engine applies its own malformed-event handling.
    """
    if not isinstance(payload, dict):
        raise DataUnavailable(RefreshConstants.KIND_COMPLETIONS, room_id, "payload is not an object")

    events: List[CompletionEvent] = []
    for raw_member_id, entries in payload.items():
        try:
            member_id = int(raw_member_id)
        except (TypeError, ValueError):
            logger.warning(f"Room {room_id}: skipping completions of invalid member id {raw_member_id!r}")
            continue
        if not isinstance(entries, list):
            logger.warning(f"Room {room_id}: completions of member {member_id} are not a list, skipping")
            continue

        for entry in entries:
            try:
                if isinstance(entry, dict):
                    year, day, part, timestamp = entry['year'], entry['day'], entry['part'], entry['timestamp']
                else:
                    year, day, part, timestamp = entry
                puzzle = Puzzle(int(year), int(day), Part.from_value(part))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Room {room_id}: dropping malformed entry {entry!r} for member {member_id}: {e}")
                continue
            events.append(CompletionEvent(member_id, puzzle, timestamp))

    return CompletionSnapshot.from_events(events, fetched_at=datetime.now(timezone.utc))


def parse_roster_payload(payload: Any, room_id: str) -> Roster:
    """Build a Roster from ``{eligibleMembers: [...], enrolledMembers: [...]}``."""
    if not isinstance(payload, dict):
        raise DataUnavailable(RefreshConstants.KIND_ROSTER, room_id, "payload is not an object")

    def members(key: str) -> Tuple[Member, ...]:
        parsed = []
        for item in payload.get(key) or []:
            try:
                parsed.append(Member(int(item['id']), str(item['name']), item.get('enrolledAt')))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Room {room_id}: dropping malformed roster entry {item!r}: {e}")
        return tuple(parsed)

    return Roster(eligible=members('eligibleMembers'), enrolled=members('enrolledMembers'))


class HttpRoomApi:
    """Shared httpx plumbing for the HTTP stores."""

    def __init__(
        self,
        base_url: str,
        session_token: Optional[str] = None,
        timeout: float = RefreshConstants.DEFAULT_FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        cookies = {HttpConstants.SESSION_COOKIE: session_token} if session_token else None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip('/'),
            cookies=cookies,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def get_json(self, path: str, resource: str, room_id: str) -> Any:
        try:
            resp = await self._client.get(path)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise DataUnavailable(
                resource, room_id, f"{e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise DataUnavailable(resource, room_id, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise DataUnavailable(resource, room_id, f"invalid JSON: {e}") from e

    async def mutate(self, method: str, path: str, room_id: str, member_id: int, action: str, body: Dict = None) -> None:
        try:
            resp = await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise DataUnavailable(RefreshConstants.KIND_ROSTER, room_id, str(e) or type(e).__name__) from e

        if resp.status_code in HttpConstants.PERMISSION_STATUSES:
            raise PermissionDenied(room_id, action)
        if resp.status_code in HttpConstants.CONFLICT_STATUSES:
            raise MutationConflict(room_id, member_id, resp.text or resp.reason_phrase)
        if resp.is_error:
            raise DataUnavailable(
                RefreshConstants.KIND_ROSTER, room_id, f"{resp.status_code} {resp.reason_phrase}"
            )

    async def close(self):
        await self._client.aclose()


class HttpCompletionStore(CompletionStore):
    """Completion store backed by ``GET /rooms/{id}/completions``."""

    def __init__(self, api: HttpRoomApi):
        self.api = api

    async def fetch_completions(self, room_id: str) -> CompletionSnapshot:
        payload = await self.api.get_json(
            f"/rooms/{room_id}/completions", RefreshConstants.KIND_COMPLETIONS, room_id
        )
        snapshot = parse_completion_payload(payload, room_id)
        logger.debug(f"Room {room_id}: fetched {len(snapshot)} completion events")
        return snapshot


class HttpRosterStore(RosterStore):
    """Roster store backed by the room and enrollment endpoints."""

    def __init__(self, api: HttpRoomApi):
        self.api = api

    async def fetch_roster(self, room_id: str) -> Roster:
        payload = await self.api.get_json(f"/rooms/{room_id}/roster", RefreshConstants.KIND_ROSTER, room_id)
        return parse_roster_payload(payload, room_id)

    async def fetch_puzzles(self, room_id: str) -> Tuple[Puzzle, ...]:
        payload = await self.api.get_json(f"/rooms/{room_id}", RefreshConstants.KIND_PUZZLES, room_id)
        years = payload.get('years') if isinstance(payload, dict) else None
        if not years:
            years = PuzzleCalendar.released_years()
        try:
            return tuple(PuzzleCalendar.puzzles_for_years(int(year) for year in years))
        except (TypeError, ValueError) as e:
            raise DataUnavailable(RefreshConstants.KIND_PUZZLES, room_id, f"invalid years {years!r}") from e

    async def enroll(self, room_id: str, member_id: int, name: str) -> None:
        await self.api.mutate(
            "POST", f"/rooms/{room_id}/enrollments", room_id, member_id, "enroll",
            body={"memberId": member_id, "name": name}
        )
        logger.info(f"Room {room_id}: enrolled member {member_id} ({name})")

    async def unenroll(self, room_id: str, member_id: int) -> None:
        await self.api.mutate(
            "DELETE", f"/rooms/{room_id}/enrollments/{member_id}", room_id, member_id, "unenroll"
        )
        logger.info(f"Room {room_id}: unenrolled member {member_id}")
