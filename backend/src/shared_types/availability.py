"""
Shared types for practitioner availability.

WeeklyAvailability is the unit the availability resolver reads, writes and
returns: one DayAvailability per weekday (Monday first), each holding an
enabled flag and a list of "HH:MM" TimeRanges.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from core.constants import DEFAULT_DAY_SLOTS, WEEKDAY_NAMES
from core.exceptions import InvalidTimeRange
from utils.datetime_utils import format_hhmm, is_valid_hhmm, parse_hhmm


class AvailabilitySource(str, Enum):
    """Where a resolved week came from. Set by the operation that produced it."""
    DEFAULT = "default"
    TEMPLATE = "template"
    MANUAL = "manual"
    COPIED = "copied"


@dataclass(frozen=True)
class TimeRange:
    """
    A wall-clock range within one day.

    start and end are "HH:MM" strings; a valid range has start < end.
    """
    start: str
    end: str

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_hhmm(self.end)

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes

    def validate(self) -> "TimeRange":
        """
        Check both bounds are well-formed HH:MM and start < end.

        Returns:
            The range normalized to canonical "HH:MM"

        Raises:
            InvalidTimeRange: If a bound is malformed or start >= end
        """
        if not is_valid_hhmm(self.start) or not is_valid_hhmm(self.end):
            raise InvalidTimeRange(
                f"Invalid time range {self.start!r}-{self.end!r} (expected HH:MM)",
                start=self.start, end=self.end
            )
        start_minutes = parse_hhmm(self.start)
        end_minutes = parse_hhmm(self.end)
        if start_minutes >= end_minutes:
            raise InvalidTimeRange(
                f"Time range start {self.start} must be before end {self.end}",
                start=self.start, end=self.end
            )
        return TimeRange(format_hhmm(start_minutes), format_hhmm(end_minutes))

    def intersect(self, other: "TimeRange") -> Optional["TimeRange"]:
        """[a,b] ∩ [c,d] = [max(a,c), min(b,d)] when non-empty, else None."""
        start = max(self.start_minutes, other.start_minutes)
        end = min(self.end_minutes, other.end_minutes)
        if start >= end:
            return None
        return TimeRange(format_hhmm(start), format_hhmm(end))

    def overlaps(self, other: "TimeRange") -> bool:
        """Half-open overlap: touching ranges do not overlap."""
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def contains(self, other: "TimeRange") -> bool:
        return self.start_minutes <= other.start_minutes and other.end_minutes <= self.end_minutes

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeRange":
        """Create a TimeRange from {"start", "end"}; raises InvalidTimeRange on bad shape."""
        if not isinstance(data, dict):
            raise InvalidTimeRange(f"Time range must be an object, got {type(data).__name__}")
        start = data.get("start")
        end = data.get("end")
        if not isinstance(start, str) or not isinstance(end, str):
            raise InvalidTimeRange(f"Time range needs string start and end, got {data!r}")
        return cls(start=start, end=end)


def merge_ranges(ranges: List[TimeRange]) -> List[TimeRange]:
    """Sort ranges and merge any that overlap or touch (09:00-10:00 + 10:00-12:00 -> 09:00-12:00)."""
    merged: List[TimeRange] = []
    for current in sorted(ranges, key=lambda r: (r.start_minutes, r.end_minutes)):
        if merged and current.start_minutes <= merged[-1].end_minutes:
            last = merged[-1]
            if current.end_minutes > last.end_minutes:
                merged[-1] = TimeRange(last.start, current.end)
            continue
        merged.append(current)
    return merged


@dataclass(frozen=True)
class DayAvailability:
    """
    One weekday's schedule.

    When enabled is False the slots are ignored (they may be kept so the
    editor can restore them) and the day contributes no availability.
    """
    enabled: bool = False
    slots: tuple[TimeRange, ...] = ()

    @property
    def open_slots(self) -> List[TimeRange]:
        """Slots that count toward availability, in chronological order."""
        if not self.enabled:
            return []
        return sorted(self.slots, key=lambda slot: (slot.start_minutes, slot.end_minutes))

    def enable(self) -> "DayAvailability":
        """Re-enable the day, restoring the default pair when it has no slots."""
        if self.slots:
            return DayAvailability(enabled=True, slots=self.slots)
        return DayAvailability(
            enabled=True,
            slots=tuple(TimeRange(start, end) for start, end in DEFAULT_DAY_SLOTS)
        )

    def disable(self) -> "DayAvailability":
        return DayAvailability(enabled=False, slots=self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "slots": [slot.to_dict() for slot in self.slots]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DayAvailability":
        if not isinstance(data, dict):
            raise InvalidTimeRange(f"Day availability must be an object, got {type(data).__name__}")
        raw_slots = data.get("slots") or []
        if not isinstance(raw_slots, list):
            raise InvalidTimeRange(f"Day slots must be a list, got {type(raw_slots).__name__}")
        return cls(
            enabled=bool(data.get("enabled", False)),
            slots=tuple(TimeRange.from_dict(slot) for slot in raw_slots),
        )


@dataclass(frozen=True)
class WeeklyAvailability:
    """Mapping monday..sunday -> DayAvailability. Missing days are closed."""
    days: Dict[str, DayAvailability] = field(default_factory=dict)

    def day(self, name: str) -> DayAvailability:
        return self.days.get(name, DayAvailability())

    def for_date(self, value: date) -> DayAvailability:
        return self.day(WEEKDAY_NAMES[value.weekday()])

    def validate(self) -> "WeeklyAvailability":
        """
        Validate every TimeRange of every day (enabled or not).

        Returns:
            A normalized copy holding all seven weekdays in display order,
            each day's slots sorted chronologically

        Raises:
            InvalidTimeRange: On the first malformed or inverted range
        """
        unknown = set(self.days) - set(WEEKDAY_NAMES)
        if unknown:
            raise InvalidTimeRange(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return WeeklyAvailability(days={
            name: DayAvailability(
                enabled=self.day(name).enabled,
                slots=tuple(sorted(
                    (slot.validate() for slot in self.day(name).slots),
                    key=lambda slot: (slot.start_minutes, slot.end_minutes),
                )),
            )
            for name in WEEKDAY_NAMES
        })

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: self.day(name).to_dict() for name in WEEKDAY_NAMES}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeeklyAvailability":
        """Create WeeklyAvailability from the {weekday: {enabled, slots}} shape."""
        if not isinstance(data, dict):
            raise InvalidTimeRange(f"Weekly availability must be an object, got {type(data).__name__}")
        return cls(days={name: DayAvailability.from_dict(value) for name, value in data.items()})


@dataclass(frozen=True)
class StoredAvailability:
    """Raw record as persisted by an availability store (not yet parsed)."""
    provider_id: int
    availability: Any
    source: str
    year: Optional[int] = None
    week: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ResolvedAvailability:
    """Result of resolving a provider's week through the override/template/default hierarchy."""
    provider_id: int
    year: int
    week: int
    availability: WeeklyAvailability
    source: AvailabilitySource
    has_specific_entry: bool
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "year": self.year,
            "week": self.week,
            "availability": self.availability.to_dict(),
            "source": self.source.value,
            "hasSpecificEntry": self.has_specific_entry,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class EffectiveAvailability:
    """A provider's open ranges on one date, intersected with clinic hours."""
    provider_id: int
    date: date
    source: AvailabilitySource
    slots: tuple[TimeRange, ...] = ()

    def covers(self, window: TimeRange) -> bool:
        """True if one open range contains the whole window (ranges are merged beforehand)."""
        return any(slot.contains(window) for slot in self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "date": self.date.isoformat(),
            "source": self.source.value,
            "slots": [slot.to_dict() for slot in self.slots],
        }
