"""
Refresh coordination for open room views.

Each open room has one view holding the last good roster, puzzle set, completion
snapshot and computed standings. Roster and puzzles are pulled when the view opens
and after an invalidation; completions are pulled on a fixed interval.

Key rules:
- At most one fetch per (room, kind) is in flight; later requests join it
- A successful pull replaces the old value in one assignment
- A failed or timed-out pull keeps the old value and marks the view stale
- Standings are recomputed in a worker thread; a result is applied only when its
  generation number is newer than the one already applied
- Closing a view cancels its polling and its in-flight pulls
"""

import asyncio
import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple, Union

from puzzlerace.config import Config
from puzzlerace.constants import RefreshConstants
from puzzlerace.data_models.puzzle import Puzzle
from puzzlerace.data_models.roster import Roster, normalize_room_id
from puzzlerace.data_models.standings import (
    NOT_YET_LOADED, CompletionSnapshot, LoadState, StandingsEntry
)
from puzzlerace.services.stores import CompletionStore, RosterStore
from puzzlerace.utils.logger import setup_logger
from puzzlerace.utils.puzzles import find_open_puzzles
from puzzlerace.utils.race_exceptions import DataUnavailable
from puzzlerace.utils.scoring import ScoringStrategy, ScoringStrategyFactory, compute_standings

logger = setup_logger(__name__)


@dataclass
class RoomView:
    """Cached state of one open room."""
    room_id: str
    roster: Optional[Roster] = None
    puzzles: Optional[Tuple[Puzzle, ...]] = None
    snapshot: Optional[CompletionSnapshot] = None
    standings: Optional[List[StandingsEntry]] = None
    last_refreshed_at: Optional[datetime] = None
    failed_kinds: Set[str] = field(default_factory=set)
    issued_generation: int = 0
    applied_generation: int = 0
    poll_task: Optional[asyncio.Task] = None
    pending: Set[asyncio.Task] = field(default_factory=set)


class RefreshCoordinator:
    """Owns the pull cycles of every open room view."""

    def __init__(
        self,
        completion_store: CompletionStore,
        roster_store: RosterStore,
        refresh_interval: Optional[float] = None,
        fetch_timeout: Optional[float] = None,
        strategy: Optional[ScoringStrategy] = None
    ):
        self.completion_store = completion_store
        self.roster_store = roster_store
        self.refresh_interval = refresh_interval or Config.COMPLETIONS_REFRESH_SECONDS
        self.fetch_timeout = fetch_timeout or Config.FETCH_TIMEOUT_SECONDS
        self.strategy = strategy or ScoringStrategyFactory.create_strategy(Config.SCORING_STRATEGY)
        self._compute = compute_standings
        self._views: Dict[str, RoomView] = {}
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}

    # View lifecycle

    async def open_room(self, room_id) -> None:
        """Activate a room view: initial pulls, then periodic completion polling."""
        room_id = normalize_room_id(room_id)
        if room_id in self._views:
            logger.debug(f"Room {room_id} already open")
            return

        view = RoomView(room_id)
        self._views[room_id] = view
        logger.info(f"Opening room {room_id} (refresh every {self.refresh_interval}s)")

        await asyncio.gather(
            self._request(view, RefreshConstants.KIND_ROSTER),
            self._request(view, RefreshConstants.KIND_PUZZLES),
            self._request(view, RefreshConstants.KIND_COMPLETIONS),
        )

        if self._is_open(view):
            view.poll_task = asyncio.create_task(self._poll_loop(view), name=f"poll-{room_id}")

    async def close_room(self, room_id) -> None:
        """Deactivate a room view and cancel all of its pending work."""
        room_id = normalize_room_id(room_id)
        view = self._views.pop(room_id, None)
        if view is None:
            return

        for key in [key for key in self._in_flight if key[0] == room_id]:
            del self._in_flight[key]

        tasks = list(view.pending)
        if view.poll_task is not None:
            tasks.append(view.poll_task)
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Closed room {room_id}, cancelled {len(tasks)} pending task(s)")

    async def close(self) -> None:
        for room_id in list(self._views):
            await self.close_room(room_id)

    def _is_open(self, view: RoomView) -> bool:
        return self._views.get(view.room_id) is view

    # Pulls

    async def force_invalidate(self, room_id) -> bool:
        """Re-pull roster, puzzles and completions of an open room."""
        room_id = normalize_room_id(room_id)
        view = self._views.get(room_id)
        if view is None:
            logger.debug(f"Room {room_id} not open, nothing to invalidate")
            return False

        logger.info(f"Invalidating cached data for room {room_id}")
        results = await asyncio.gather(
            self._request(view, RefreshConstants.KIND_ROSTER),
            self._request(view, RefreshConstants.KIND_PUZZLES),
            self._request(view, RefreshConstants.KIND_COMPLETIONS),
        )
        return all(results)

    async def refresh_completions(self, room_id) -> bool:
        view = self._views.get(normalize_room_id(room_id))
        if view is None:
            return False
        return await self._request(view, RefreshConstants.KIND_COMPLETIONS)

    async def _poll_loop(self, view: RoomView) -> None:
        while self._is_open(view):
            await asyncio.sleep(self.refresh_interval)
            if not self._is_open(view):
                break
            await self._request(view, RefreshConstants.KIND_COMPLETIONS)

    async def _request(self, view: RoomView, kind: str) -> bool:
        """Start a pull, or join the one already in flight for (room, kind)."""
        key = (view.room_id, kind)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._pull(view, kind))
            self._in_flight[key] = task
            view.pending.add(task)
            task.add_done_callback(view.pending.discard)
            task.add_done_callback(functools.partial(self._forget, key))
        else:
            logger.debug(f"Room {view.room_id}: joining in-flight {kind} pull")

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The shared pull was cancelled by close_room, not this caller
            if task.cancelled():
                return False
            raise

    def _forget(self, key: Tuple[str, str], task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _pull(self, view: RoomView, kind: str) -> bool:
        fetchers = {
            RefreshConstants.KIND_ROSTER: self.roster_store.fetch_roster,
            RefreshConstants.KIND_PUZZLES: self.roster_store.fetch_puzzles,
            RefreshConstants.KIND_COMPLETIONS: self.completion_store.fetch_completions,
        }

        error = None
        try:
            result = await asyncio.wait_for(fetchers[kind](view.room_id), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            error = DataUnavailable(kind, view.room_id, f"timed out after {self.fetch_timeout}s")
        except DataUnavailable as e:
            error = e
        except Exception as e:
            logger.error(f"Room {view.room_id}: unexpected error pulling {kind}: {e}", exc_info=True)
            error = DataUnavailable(kind, view.room_id, str(e))

        # Requests from here on start a fresh pull instead of joining this one
        self._forget((view.room_id, kind), asyncio.current_task())

        if not self._is_open(view):
            return False

        if error is not None:
            view.failed_kinds.add(kind)
            logger.warning(f"{error}; keeping last good {kind}")
            return False

        if kind == RefreshConstants.KIND_ROSTER:
            view.roster = result
        elif kind == RefreshConstants.KIND_PUZZLES:
            view.puzzles = tuple(result)
        else:
            view.snapshot = result
            view.last_refreshed_at = result.fetched_at
        view.failed_kinds.discard(kind)
        logger.debug(f"Room {view.room_id}: {kind} refreshed")

        await self._recompute(view)
        return True

    # Standings

    async def _recompute(self, view: RoomView) -> None:
        if view.roster is None or view.puzzles is None or view.snapshot is None:
            return

        view.issued_generation += 1
        generation = view.issued_generation
        standings = await asyncio.to_thread(
            self._compute, view.puzzles, view.roster.enrolled, view.snapshot, self.strategy
        )

        if not self._is_open(view):
            return
        if generation <= view.applied_generation:
            logger.debug(
                f"Room {view.room_id}: discarding standings generation {generation}, "
                f"{view.applied_generation} already applied"
            )
            return
        view.standings = standings
        view.applied_generation = generation

    # Presentation-facing reads

    def current_snapshot(self, room_id) -> Union[CompletionSnapshot, LoadState]:
        view = self._views.get(normalize_room_id(room_id))
        if view is None or view.snapshot is None:
            return NOT_YET_LOADED
        return view.snapshot

    def standings(self, room_id) -> Union[List[StandingsEntry], LoadState]:
        view = self._views.get(normalize_room_id(room_id))
        if view is None or view.standings is None:
            return NOT_YET_LOADED
        return list(view.standings)

    def roster(self, room_id) -> Union[Roster, LoadState]:
        view = self._views.get(normalize_room_id(room_id))
        if view is None or view.roster is None:
            return NOT_YET_LOADED
        return view.roster

    def is_stale(self, room_id) -> bool:
        view = self._views.get(normalize_room_id(room_id))
        return view is not None and bool(view.failed_kinds)

    def last_refreshed_at(self, room_id) -> Optional[datetime]:
        view = self._views.get(normalize_room_id(room_id))
        return view.last_refreshed_at if view else None

    def open_puzzles(self, room_id, since: Optional[datetime] = None) -> Union[List[Puzzle], LoadState]:
        """Puzzles no enrolled member had solved before ``since``."""
        view = self._views.get(normalize_room_id(room_id))
        if view is None or view.roster is None or view.puzzles is None or view.snapshot is None:
            return NOT_YET_LOADED
        return find_open_puzzles(view.puzzles, view.roster.enrolled_ids, view.snapshot, since)

    def open_rooms(self) -> List[str]:
        return list(self._views)
