"""Half-open time intervals.

Works for ``datetime.time`` (weekly windows, breaks) and ``datetime.datetime``
(appointments, overrides) alike: only ordering is used. Callers normalize
timestamps to the facility timezone; nothing here converts zones.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any


@dataclass(frozen=True)
class Interval:
    start: Any
    end: Any

    @classmethod
    def from_duration(cls, start: datetime, minutes: int) -> 'Interval':
        return cls(start, start + timedelta(minutes=minutes))

    @property
    def is_empty(self) -> bool:
        return not self.start < self.end

    def contains_point(self, value) -> bool:
        return self.start <= value < self.end


def overlaps(a: Interval, b: Interval) -> bool:
    # Touching endpoints do not overlap.
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def subtract(window: Interval, brk: Interval | None) -> list[Interval]:
    """Return the parts of ``window`` not covered by ``brk``."""
    if brk is None or not overlaps(window, brk):
        return [] if window.is_empty else [window]

    pieces = [
        Interval(window.start, min(brk.start, window.end)),
        Interval(max(brk.end, window.start), window.end),
    ]
    return [piece for piece in pieces if not piece.is_empty]


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)
