"""
Standings data models.

Provides immutable data transfer objects for completion snapshots and the ranked
standings derived from them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from puzzlerace.data_models.puzzle import Puzzle


class LoadState(Enum):
    """Marker for data a room view has not received yet."""
    NOT_YET_LOADED = "not_yet_loaded"


NOT_YET_LOADED = LoadState.NOT_YET_LOADED


@dataclass(frozen=True)
class CompletionEvent:
    """One member finishing one puzzle.

    ``timestamp`` is kept exactly as the upstream source sent it; the scoring
    engine parses it and drops the event when it cannot.
    """
    member_id: int
    puzzle: Puzzle
    timestamp: Any


@dataclass(frozen=True)
class CompletionSnapshot:
    """All completion events of a room captured at one refresh instant."""
    events: Mapping[int, Tuple[CompletionEvent, ...]]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        frozen = {
            member_id: tuple(member_events)
            for member_id, member_events in self.events.items()
        }
        object.__setattr__(self, 'events', MappingProxyType(frozen))

    @classmethod
    def from_events(
        cls,
        events: Iterable[CompletionEvent],
        fetched_at: Optional[datetime] = None
    ) -> "CompletionSnapshot":
        """Group a flat event stream by member, preserving arrival order."""
        grouped: Dict[int, list] = {}
        for event in events:
            grouped.setdefault(event.member_id, []).append(event)
        if fetched_at is None:
            return cls(grouped)
        return cls(grouped, fetched_at)

    @property
    def member_ids(self) -> Tuple[int, ...]:
        return tuple(self.events.keys())

    def events_for(self, member_id: int) -> Tuple[CompletionEvent, ...]:
        return self.events.get(member_id, ())

    def __len__(self):
        return sum(len(member_events) for member_events in self.events.values())


@dataclass(frozen=True)
class StandingsEntry:
    """Single standings row."""
    member_id: int
    display_name: str
    score: int
    rank: int
