"""
Project-wide constants for the puzzle race standings engine.

This module contains the magic numbers used throughout the codebase so that the
refresh cadence, calendar rules and HTTP behaviour are defined in one place.
"""

class RefreshConstants:
    """Constants related to pulling room data."""

    # Upstream tracker rate constraint: one completion pull per 15 minutes
    DEFAULT_COMPLETIONS_INTERVAL = 900

    # A single fetch that runs longer than this is a failure, not a hang
    DEFAULT_FETCH_TIMEOUT = 30

    # Resource kinds used as de-duplication keys
    KIND_ROSTER = "roster"
    KIND_PUZZLES = "puzzles"
    KIND_COMPLETIONS = "completions"

class PuzzleConstants:
    """Constants for the puzzle calendar."""

    # First event year of the tracked puzzle calendar
    EARLIEST_YEAR = 2015

    # Calendar length before and after the 2025 format change
    LEGACY_CALENDAR_SIZE = 25
    SHORT_CALENDAR_SIZE = 12
    SHORT_CALENDAR_FROM_YEAR = 2025

    # Puzzles are released in December
    RELEASE_MONTH = 12

    # Difficulty estimate: 1..6 over the calendar, +2 for the second part
    DIFFICULTY_SPAN = 5
    SECOND_PART_DIFFICULTY_BONUS = 2

class HttpConstants:
    """Constants for talking to the room API."""

    # Cookie name carrying the room session credential
    SESSION_COOKIE = "session"

    # Status codes that mean the server refused the caller
    PERMISSION_STATUSES = (401, 403)

    # Status codes that mean the server rejected a roster mutation
    CONFLICT_STATUSES = (404, 409, 422)
