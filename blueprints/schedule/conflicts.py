"""Поиск пересечений недельных слотов по преподавателю и по аудитории.

Время внутри считается в минутах от полуночи, наружу отдаётся как HH:MM.
Интервалы полуоткрытые [start, end): занятия, стыкующиеся концами, не конфликтуют.
Движок не бросает исключений на конфликт, а возвращает ConflictReport.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Optional, Protocol, Sequence

from blueprints.core.clock import DAYS
from blueprints.core.errors import ValidationError

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def to_minutes(value: Any) -> int:
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, str):
        m = _HHMM.match(value)
        if m:
            return int(m.group(1)) * 60 + int(m.group(2))
    raise ValidationError(f"Invalid time '{value}', expected HH:MM", details={"value": str(value)})


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_day(value: str) -> str:
    day = (value or "").strip().capitalize()
    if day not in DAYS:
        raise ValidationError(f"Invalid day of week '{value}'", details={"allowed": list(DAYS)})
    return day


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """True, если интервал a пересекает интервал b (a - кандидат, b - существующий)."""
    return (
        (b_start <= a_start < b_end)          # a начинается внутри b
        or (b_start < a_end <= b_end)         # a заканчивается внутри b
        or (a_start <= b_start and b_end <= a_end)  # a целиком накрывает b
    )


@dataclass(frozen=True)
class TimeSlot:
    day_of_week: str
    start: int
    end: int

    def __post_init__(self):
        if self.day_of_week not in DAYS:
            raise ValidationError(f"Invalid day of week '{self.day_of_week}'", details={"allowed": list(DAYS)})
        if self.end <= self.start:
            raise ValidationError(
                "End time must be after start time",
                details={"start_time": format_minutes(self.start), "end_time": format_minutes(self.end)},
            )

    @classmethod
    def parse(cls, day_of_week: str, start_time: Any, end_time: Any) -> "TimeSlot":
        return cls(normalize_day(day_of_week), to_minutes(start_time), to_minutes(end_time))

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    @property
    def start_time(self) -> time:
        return time(self.start // 60, self.start % 60)

    @property
    def end_time(self) -> time:
        return time(self.end // 60, self.end % 60)

    def label(self) -> str:
        return f"{format_minutes(self.start)} - {format_minutes(self.end)}"

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.day_of_week == other.day_of_week and intervals_overlap(self.start, self.end, other.start, other.end)


@dataclass(frozen=True)
class SlotCandidate:
    instructor_id: int
    room_number: str
    slot: TimeSlot
    academic_year: str
    semester: int


class SlotRepository(Protocol):
    def find_active(
        self,
        *,
        day_of_week: str,
        academic_year: str,
        semester: int,
        instructor_id: Optional[int] = None,
        room_number: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> Sequence[Any]:
        ...


@dataclass
class ConflictReport:
    instructor_conflicts: list = field(default_factory=list)
    room_conflicts: list = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.instructor_conflicts or self.room_conflicts)


class ConflictEngine:
    def __init__(self, slots: SlotRepository):
        self.slots = slots

    def check(self, candidate: SlotCandidate, exclude_id: Optional[int] = None) -> ConflictReport:
        scope = dict(
            day_of_week=candidate.slot.day_of_week,
            academic_year=candidate.academic_year,
            semester=candidate.semester,
            exclude_id=exclude_id,
        )
        by_instructor = self.slots.find_active(instructor_id=candidate.instructor_id, **scope)
        by_room = self.slots.find_active(room_number=candidate.room_number, **scope)
        return ConflictReport(
            instructor_conflicts=[s for s in by_instructor if self._hits(candidate.slot, s)],
            room_conflicts=[s for s in by_room if self._hits(candidate.slot, s)],
        )

    @staticmethod
    def _hits(slot: TimeSlot, existing: Any) -> bool:
        return intervals_overlap(slot.start, slot.end, to_minutes(existing.start_time), to_minutes(existing.end_time))
