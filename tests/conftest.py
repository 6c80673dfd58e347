import asyncio
import os
import sys
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

# Ensure the project root (containing the `puzzlerace` package) is on sys.path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from puzzlerace.config import Config

# Keep test runs from writing log files
Config.LOG_DIR = ''

from puzzlerace.data_models.puzzle import Part, Puzzle
from puzzlerace.data_models.roster import Member, Roster
from puzzlerace.data_models.standings import CompletionEvent, CompletionSnapshot
from puzzlerace.services.stores import CompletionStore, RosterStore
from puzzlerace.utils.race_exceptions import DataUnavailable, MutationConflict


DAY1_A = Puzzle(2024, 1, Part.FIRST)
DAY1_B = Puzzle(2024, 1, Part.SECOND)
DAY2_A = Puzzle(2024, 2, Part.FIRST)
DAY2_B = Puzzle(2024, 2, Part.SECOND)
PUZZLES = (DAY1_A, DAY1_B, DAY2_A, DAY2_B)


def make_snapshot(solves: Dict[int, Iterable[Tuple[Puzzle, object]]]) -> CompletionSnapshot:
    """Build a snapshot from {member_id: [(puzzle, timestamp), ...]}."""
    events = [
        CompletionEvent(member_id, puzzle, timestamp)
        for member_id, member_solves in solves.items()
        for puzzle, timestamp in member_solves
    ]
    return CompletionSnapshot.from_events(events)


def members(*pairs: Tuple[int, str]) -> List[Member]:
    return [Member(member_id, name) for member_id, name in pairs]


class FakeCompletionStore(CompletionStore):
    """In-memory completion store with switchable failures and delays."""

    def __init__(self, snapshot: Optional[CompletionSnapshot] = None):
        self.snapshot = snapshot or CompletionSnapshot({})
        self.calls = 0
        self.fail = False
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None

    async def fetch_completions(self, room_id: str) -> CompletionSnapshot:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise DataUnavailable("completions", room_id, "upstream down")
        return self.snapshot


class FakeRosterStore(RosterStore):
    """In-memory roster store acting as the server's source of truth."""

    def __init__(self, eligible: Iterable[Member] = (), enrolled: Iterable[Member] = (), puzzles=PUZZLES):
        self.eligible = {m.member_id: m for m in eligible}
        self.enrolled = {m.member_id: m for m in enrolled}
        self.eligible.update(self.enrolled)
        self.puzzles = tuple(puzzles)
        self.roster_calls = 0
        self.puzzle_calls = 0
        self.mutations: List[Tuple] = []
        self.fail = False
        self.mutation_error: Optional[Exception] = None

    async def fetch_roster(self, room_id: str) -> Roster:
        self.roster_calls += 1
        if self.fail:
            raise DataUnavailable("roster", room_id, "upstream down")
        return Roster(eligible=tuple(self.eligible.values()), enrolled=tuple(self.enrolled.values()))

    async def fetch_puzzles(self, room_id: str):
        self.puzzle_calls += 1
        if self.fail:
            raise DataUnavailable("puzzles", room_id, "upstream down")
        return self.puzzles

    async def enroll(self, room_id: str, member_id: int, name: str) -> None:
        self.mutations.append(("enroll", room_id, member_id, name))
        if self.mutation_error is not None:
            raise self.mutation_error
        if member_id in self.enrolled:
            raise MutationConflict(room_id, member_id, "Member is already enrolled")
        self.enrolled[member_id] = Member(member_id, name)
        self.eligible.setdefault(member_id, Member(member_id, name))

    async def unenroll(self, room_id: str, member_id: int) -> None:
        self.mutations.append(("unenroll", room_id, member_id))
        if self.mutation_error is not None:
            raise self.mutation_error
        if member_id not in self.enrolled:
            raise MutationConflict(room_id, member_id, "Member is not enrolled")
        del self.enrolled[member_id]


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'puzzlerace_test.db'}"


@pytest.fixture()
def roster_store():
    return FakeRosterStore(
        eligible=members((4, "Dana")),
        enrolled=members((1, "Ada"), (2, "Bo"), (3, "Cy")),
    )


@pytest.fixture()
def completion_store():
    return FakeCompletionStore(make_snapshot({
        1: [(DAY1_A, "2024-12-01T05:10:00Z"), (DAY1_B, "2024-12-01T05:20:00Z")],
        2: [(DAY1_A, "2024-12-01T05:15:00Z")],
    }))
