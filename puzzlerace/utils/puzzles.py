"""
Puzzle calendar utilities.

Knows which puzzles exist for which event years and which of them are still open
(unsolved) for a group of members.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence
import logging
import math

from puzzlerace.constants import PuzzleConstants
from puzzlerace.data_models.puzzle import Part, Puzzle
from puzzlerace.data_models.standings import CompletionSnapshot
from puzzlerace.utils.scoring import collect_first_solves

logger = logging.getLogger(__name__)


class PuzzleCalendar:
    """Release calendar of the tracked puzzle events."""

    EARLIEST_YEAR = PuzzleConstants.EARLIEST_YEAR

    @staticmethod
    def calendar_size(year: int) -> int:
        """Number of puzzle days in an event year."""
        if year < PuzzleConstants.EARLIEST_YEAR:
            raise ValueError(f"Year must be {PuzzleConstants.EARLIEST_YEAR} or later.")
        if year < PuzzleConstants.SHORT_CALENDAR_FROM_YEAR:
            return PuzzleConstants.LEGACY_CALENDAR_SIZE
        return PuzzleConstants.SHORT_CALENDAR_SIZE

    @staticmethod
    def latest_day_of_year(year: int, now: Optional[datetime] = None) -> Optional[int]:
        """Last released day of ``year`` as of ``now``, None when nothing is out yet."""
        now = now or datetime.now(timezone.utc)
        if year < PuzzleConstants.EARLIEST_YEAR:
            return None
        if year > now.year or (year == now.year and now.month < PuzzleConstants.RELEASE_MONTH):
            return None
        size = PuzzleCalendar.calendar_size(year)
        if year == now.year:
            return min(now.day, size)
        return size

    @staticmethod
    def latest_puzzle_day(now: Optional[datetime] = None) -> Puzzle:
        """Most recently released first-part puzzle as of ``now``."""
        now = now or datetime.now(timezone.utc)
        year = now.year if now.month == PuzzleConstants.RELEASE_MONTH else now.year - 1
        return Puzzle(year, PuzzleCalendar.latest_day_of_year(year, now), Part.FIRST)

    @staticmethod
    def released_years(now: Optional[datetime] = None) -> List[int]:
        latest = PuzzleCalendar.latest_puzzle_day(now)
        return list(range(PuzzleConstants.EARLIEST_YEAR, latest.year + 1))

    @staticmethod
    def puzzles_for_years(years: Iterable[int], now: Optional[datetime] = None) -> List[Puzzle]:
        """Ordered puzzle set for the given years, both parts of every released day."""
        puzzles = []
        for year in years:
            latest_day = PuzzleCalendar.latest_day_of_year(year, now)
            if latest_day is None:
                logger.debug(f"No released puzzles for year {year}")
                continue
            for day in range(1, latest_day + 1):
                puzzles.append(Puzzle(year, day, Part.FIRST))
                puzzles.append(Puzzle(year, day, Part.SECOND))
        return puzzles

    @staticmethod
    def estimate_difficulty(puzzle: Puzzle) -> int:
        """Rough 1..8 difficulty from calendar position and part."""
        size = PuzzleCalendar.calendar_size(puzzle.year)
        progression = (puzzle.day - 1) / (size - 1)
        difficulty = math.floor(progression * PuzzleConstants.DIFFICULTY_SPAN + 1)
        if puzzle.part == Part.SECOND:
            difficulty += PuzzleConstants.SECOND_PART_DIFFICULTY_BONUS
        return difficulty


def find_open_puzzles(
    puzzles: Sequence[Puzzle],
    member_ids: Iterable[int],
    snapshot: CompletionSnapshot,
    since: Optional[datetime] = None
) -> List[Puzzle]:
    """
    Puzzles none of the members had solved before ``since``.

    Solves at or after ``since`` do not close a puzzle. A second part is never open on
    the final day of a calendar; otherwise it is open when every member has the first
    part and nobody had the second, or nobody had either part.
    """
    member_ids = list(member_ids)
    first_solves = collect_first_solves(
        list(puzzles) + [Puzzle(p.year, p.day, Part.FIRST) for p in puzzles if p.part == Part.SECOND],
        member_ids,
        snapshot
    )
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)

    def solved_before(puzzle: Puzzle, member_id: int) -> bool:
        solved_at = first_solves.get(puzzle, {}).get(member_id)
        if solved_at is None:
            return False
        return since is None or solved_at < since

    def solved_at_all(puzzle: Puzzle, member_id: int) -> bool:
        return member_id in first_solves.get(puzzle, {})

    open_puzzles = []
    for puzzle in puzzles:
        if puzzle.part == Part.FIRST:
            if not any(solved_before(puzzle, m) for m in member_ids):
                open_puzzles.append(puzzle)
            continue

        if puzzle.day == PuzzleCalendar.calendar_size(puzzle.year):
            continue
        first_part = Puzzle(puzzle.year, puzzle.day, Part.FIRST)
        nobody_has_second = not any(solved_before(puzzle, m) for m in member_ids)
        everyone_has_first = all(solved_at_all(first_part, m) for m in member_ids)
        nobody_has_either = nobody_has_second and not any(solved_before(first_part, m) for m in member_ids)
        if (everyone_has_first and nobody_has_second) or nobody_has_either:
            open_puzzles.append(puzzle)

    return open_puzzles
