"""
Puzzle identity data models.

A puzzle is an opaque (year, day, part) triple; nothing about its content is modeled.
"""

from dataclasses import dataclass
from functools import total_ordering
from enum import Enum


class Part(Enum):
    """Which half of a daily puzzle."""
    FIRST = 1
    SECOND = 2

    @classmethod
    def from_value(cls, value) -> "Part":
        """Accept 1/2, '1'/'2' or the member names."""
        if isinstance(value, Part):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid puzzle part: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip().upper()
            if text.isdigit():
                return cls(int(text))
            if text in cls.__members__:
                return cls[text]
        raise ValueError(f"Invalid puzzle part: {value!r}")


@total_ordering
@dataclass(frozen=True)
class Puzzle:
    """Single puzzle identifier, ordered by year, day, then part."""
    year: int
    day: int
    part: Part

    def __post_init__(self):
        if not 1 <= self.day <= 25:
            raise ValueError(f"Invalid puzzle day {self.day} for year {self.year}")

    def __lt__(self, other):
        if not isinstance(other, Puzzle):
            return NotImplemented
        return (self.year, self.day, self.part.value) < (other.year, other.day, other.part.value)

    def __str__(self):
        return f"{self.year}/{self.day:02d}/{self.part.value}"
