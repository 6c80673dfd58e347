"""
Scoring Strategy Pattern for Puzzle Race Standings

This module turns a completion snapshot into ranked standings. For every puzzle a
member solved, the member earns one point per other enrolled member who either
never solved that puzzle or solved it strictly later. Simultaneous solves earn
nothing against each other, and unsolved puzzles never subtract.

Two interchangeable strategies compute the same totals:
- PairwiseRaceStrategy compares every ordered pair of members (O(N^2) per puzzle)
- SortedRaceStrategy sorts solve times per puzzle and counts (O(N log N) per puzzle)

compute_standings() is pure: it reads only its arguments, keeps no state and can
run concurrently on different snapshots.
"""

from abc import ABC, abstractmethod
from bisect import bisect_right
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from puzzlerace.data_models.puzzle import Puzzle
from puzzlerace.data_models.roster import Member
from puzzlerace.data_models.standings import CompletionSnapshot, StandingsEntry
from puzzlerace.utils.race_exceptions import MalformedEvent
from puzzlerace.utils.ranking import RankingUtility
from puzzlerace.utils.time_parser import parse_completion_timestamp

logger = logging.getLogger(__name__)

# puzzle -> member_id -> earliest solve time
FirstSolves = Dict[Puzzle, Dict[int, datetime]]


def collect_first_solves(
    puzzles: Iterable[Puzzle],
    member_ids: Iterable[int],
    snapshot: CompletionSnapshot
) -> FirstSolves:
    """
    Reduce a snapshot to the earliest valid solve per (puzzle, member).

    Events for puzzles outside the puzzle set or members outside ``member_ids`` are
    ignored. Events whose timestamp cannot be parsed are dropped and logged as a
    data-quality warning; they never abort the computation.
    """
    puzzle_set = set(puzzles)
    first_solves: FirstSolves = {puzzle: {} for puzzle in puzzle_set}

    for member_id in member_ids:
        for event in snapshot.events_for(member_id):
            if event.puzzle not in puzzle_set:
                continue
            try:
                solved_at = parse_completion_timestamp(event.timestamp)
            except ValueError as e:
                problem = MalformedEvent(member_id, event.timestamp, str(e))
                logger.warning(f"Dropping completion for {event.puzzle}: {problem}")
                continue

            solvers = first_solves[event.puzzle]
            previous = solvers.get(member_id)
            if previous is None or solved_at < previous:
                solvers[member_id] = solved_at

    return first_solves


class ScoringStrategy(ABC):
    """
    Abstract base class for scoring strategies.

    Each strategy implements a different way of computing the same per-member totals
    from first-solve times.
    """

    @abstractmethod
    def calculate_scores(self, member_ids: Sequence[int], first_solves: FirstSolves) -> Dict[int, int]:
        """
        Calculate total points for all members.

        Args:
            member_ids: Enrolled member ids
            first_solves: Earliest solve time per puzzle and member

        Returns:
            Dictionary mapping member_id to total points (every member present)
        """
        pass

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Get human-readable name of this strategy"""
        pass


class PairwiseRaceStrategy(ScoringStrategy):
    """
    Reference strategy: compare each solver with every other enrolled member.

    A solver is credited against another member who has no solve for the puzzle or
    whose solve is strictly later.
    """

    def calculate_scores(self, member_ids: Sequence[int], first_solves: FirstSolves) -> Dict[int, int]:
        scores = {member_id: 0 for member_id in member_ids}
        comparison_count = 0

        for puzzle, solvers in first_solves.items():
            for member_id, solved_at in solvers.items():
                points_for_puzzle = 0
                for other_id in member_ids:
                    if other_id == member_id:
                        continue
                    comparison_count += 1
                    other_solved_at = solvers.get(other_id)
                    if other_solved_at is None or other_solved_at > solved_at:
                        points_for_puzzle += 1
                scores[member_id] += points_for_puzzle

        logger.debug(f"Pairwise scoring: {len(scores)} members, {comparison_count} comparisons")
        return scores

    def get_strategy_name(self) -> str:
        return "Pairwise"


class SortedRaceStrategy(ScoringStrategy):
    """
    Per-puzzle sort strategy with the same results as PairwiseRaceStrategy.

    For a solve at time t the credit is the number of non-solvers plus the number of
    solvers whose time is strictly after t.
    """

    def calculate_scores(self, member_ids: Sequence[int], first_solves: FirstSolves) -> Dict[int, int]:
        scores = {member_id: 0 for member_id in member_ids}
        member_count = len(scores)

        for puzzle, solvers in first_solves.items():
            if not solvers:
                continue
            times = sorted(solvers.values())
            non_solvers = member_count - len(times)
            for member_id, solved_at in solvers.items():
                later_solvers = len(times) - bisect_right(times, solved_at)
                scores[member_id] += non_solvers + later_solvers

        return scores

    def get_strategy_name(self) -> str:
        return "Sorted"


class ScoringStrategyFactory:
    """Factory for creating scoring strategies by configured name"""

    @staticmethod
    def create_strategy(strategy_name: str) -> ScoringStrategy:
        """
        Create a scoring strategy.

        Args:
            strategy_name: "pairwise" or "sorted" (case-insensitive)

        Returns:
            Configured ScoringStrategy instance
        """
        name = (strategy_name or "").strip().lower()

        if name == "pairwise":
            return PairwiseRaceStrategy()
        elif name == "sorted":
            return SortedRaceStrategy()
        else:
            raise ValueError(f"Unknown scoring strategy: {strategy_name}")

    @staticmethod
    def get_available_strategies() -> List[str]:
        """Get list of available strategy names"""
        return ["pairwise", "sorted"]


def compute_standings(
    puzzles: Sequence[Puzzle],
    enrolled_members: Iterable[Member],
    snapshot: CompletionSnapshot,
    strategy: Optional[ScoringStrategy] = None
) -> List[StandingsEntry]:
    """
    Compute ranked standings for the enrolled members of a room.

    Members without completions score 0 and are still ranked. An empty enrolled set
    yields an empty list.

    Args:
        puzzles: The room's ordered puzzle set
        enrolled_members: Members currently counted in the standings
        snapshot: Immutable completion snapshot
        strategy: Scoring strategy, PairwiseRaceStrategy when omitted

    Returns:
        Standings sorted by score descending, member id ascending, with
        competition ranks
    """
    members: Dict[int, Member] = {}
    for member in enrolled_members:
        members.setdefault(member.member_id, member)
    if not members:
        return []

    strategy = strategy or PairwiseRaceStrategy()
    member_ids = list(members)
    first_solves = collect_first_solves(puzzles, member_ids, snapshot)
    scores = strategy.calculate_scores(member_ids, first_solves)

    standings = RankingUtility.assign_competition_ranks(
        (member_id, members[member_id].name, scores[member_id]) for member_id in member_ids
    )
    RankingUtility.validate_standings(standings)
    return standings
