"""
Tests for competition ranking and standings validation.
"""

import pytest

from puzzlerace.data_models.standings import StandingsEntry
from puzzlerace.utils.race_exceptions import InvariantViolation, RaceException
from puzzlerace.utils.ranking import RankingUtility


class TestCompetitionRanks:
    def test_tie_block_skips_following_rank(self):
        standings = RankingUtility.assign_competition_ranks([
            (4, "Dee", 2),
            (1, "Ann", 5),
            (3, "Cal", 3),
            (2, "Bea", 3),
        ])

        assert [(e.member_id, e.rank) for e in standings] == [(1, 1), (2, 2), (3, 2), (4, 4)]

    def test_all_tied(self):
        standings = RankingUtility.assign_competition_ranks([(2, "B", 0), (1, "A", 0), (3, "C", 0)])

        assert [e.member_id for e in standings] == [1, 2, 3]
        assert {e.rank for e in standings} == {1}

    def test_empty_input(self):
        assert RankingUtility.assign_competition_ranks([]) == []

    def test_sort_key_orders_score_then_id(self):
        assert RankingUtility.sort_key(7, 10) < RankingUtility.sort_key(1, 9)
        assert RankingUtility.sort_key(1, 9) < RankingUtility.sort_key(2, 9)


class TestValidateStandings:
    def test_valid_standings_pass(self):
        RankingUtility.validate_standings([
            StandingsEntry(1, "A", 4, 1),
            StandingsEntry(2, "B", 4, 1),
            StandingsEntry(3, "C", 1, 3),
        ])

    def test_negative_score_rejected(self):
        with pytest.raises(InvariantViolation):
            RankingUtility.validate_standings([StandingsEntry(1, "A", -1, 1)])

    def test_duplicate_member_rejected(self):
        with pytest.raises(InvariantViolation):
            RankingUtility.validate_standings([
                StandingsEntry(1, "A", 3, 1),
                StandingsEntry(1, "A", 2, 2),
            ])

    def test_unsorted_rows_rejected(self):
        with pytest.raises(InvariantViolation):
            RankingUtility.validate_standings([
                StandingsEntry(1, "A", 1, 1),
                StandingsEntry(2, "B", 5, 2),
            ])

    def test_dense_rank_after_tie_rejected(self):
        with pytest.raises(InvariantViolation):
            RankingUtility.validate_standings([
                StandingsEntry(1, "A", 3, 1),
                StandingsEntry(2, "B", 3, 1),
                StandingsEntry(3, "C", 1, 2),
            ])

    def test_invariant_violation_is_not_a_recoverable_error(self):
        assert issubclass(InvariantViolation, RuntimeError)
        assert not issubclass(InvariantViolation, RaceException)
