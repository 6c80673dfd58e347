"""
Shared ranking utilities for standings.

Provides the competition ranking ("1224" ranking) used for every standings table,
plus the structural checks that computed standings must pass.
"""

from typing import Iterable, List, Sequence, Tuple

from puzzlerace.data_models.standings import StandingsEntry
from puzzlerace.utils.race_exceptions import InvariantViolation


class RankingUtility:
    """Shared ranking logic for consistent standings ordering."""

    @staticmethod
    def sort_key(member_id: int, score: int) -> Tuple[int, int]:
        """Score descending, then member id ascending for display order."""
        return (-score, member_id)

    @staticmethod
    def assign_competition_ranks(rows: Iterable[Tuple[int, str, int]]) -> List[StandingsEntry]:
        """
        Sort (member_id, display_name, score) rows and assign competition ranks.

        Equal scores share a rank; the next distinct score takes its 1-based
        position, so ranks skip after a tie block (1, 2, 2, 4).
        """
        ordered = sorted(rows, key=lambda row: RankingUtility.sort_key(row[0], row[2]))

        standings: List[StandingsEntry] = []
        for position, (member_id, display_name, score) in enumerate(ordered, start=1):
            if standings and standings[-1].score == score:
                rank = standings[-1].rank
            else:
                rank = position
            standings.append(StandingsEntry(member_id, display_name, score, rank))
        return standings

    @staticmethod
    def validate_standings(standings: Sequence[StandingsEntry]) -> None:
        """
        Fail loudly when standings break a structural guarantee.

        Raises:
            InvariantViolation: negative or non-integer score, duplicate member,
                unsorted rows or a rank that is not the competition rank
        """
        seen = set()
        previous = None
        for position, entry in enumerate(standings, start=1):
            if not isinstance(entry.score, int) or entry.score < 0:
                raise InvariantViolation(f"Invalid score {entry.score!r} for member {entry.member_id}")
            if entry.member_id in seen:
                raise InvariantViolation(f"Member {entry.member_id} ranked twice")
            seen.add(entry.member_id)

            if previous is None:
                expected_rank = 1
            elif RankingUtility.sort_key(previous.member_id, previous.score) >= RankingUtility.sort_key(entry.member_id, entry.score):
                raise InvariantViolation(
                    f"Standings out of order at position {position} (member {entry.member_id})"
                )
            elif previous.score == entry.score:
                expected_rank = previous.rank
            else:
                expected_rank = position

            if entry.rank != expected_rank:
                raise InvariantViolation(
                    f"Member {entry.member_id} has rank {entry.rank}, expected {expected_rank}"
                )
            previous = entry
