"""Процент посещаемости и допуск к экзамену.

Единственная формула процента живёт в evaluate(); все сводки (по курсу,
по кафедре, список «в зоне риска») вызывают её для каждого студента.
Сравнение с порогом идёт по сырому проценту, округление только для вывода.
"""
from __future__ import annotations
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol, Sequence

from models import AttendanceStatus

DEFAULT_THRESHOLD = 75.0


def round_display(value: float) -> float:
    """Округление до 0.1 половиной вверх: 74.96 -> 75.0."""
    return math.floor(value * 10 + 0.5) / 10


@dataclass(frozen=True)
class AttendanceTally:
    present: int = 0
    absent: int = 0
    excused: int = 0

    @property
    def total(self) -> int:
        return self.present + self.absent + self.excused

    @property
    def attended(self) -> int:
        # уважительная причина засчитывается как присутствие
        return self.present + self.excused

    @property
    def percentage(self) -> float:
        return self.attended * 100 / self.total if self.total else 0.0


def tally(statuses: Iterable[Any]) -> AttendanceTally:
    counts = Counter(AttendanceStatus(getattr(s, "status", s)) for s in statuses)
    return AttendanceTally(
        present=counts[AttendanceStatus.PRESENT],
        absent=counts[AttendanceStatus.ABSENT],
        excused=counts[AttendanceStatus.EXCUSED],
    )


@dataclass(frozen=True)
class EligibilityResult:
    percentage: float
    present: int
    absent: int
    excused: int
    total_classes: int
    deficit: float
    eligible: bool
    required_percentage: float

    @property
    def has_data(self) -> bool:
        return self.total_classes > 0

    @property
    def display_percentage(self) -> float:
        return round_display(self.percentage)

    def to_dict(self) -> dict:
        return {
            "percentage": self.display_percentage,
            "raw_percentage": self.percentage,
            "present": self.present,
            "absent": self.absent,
            "excused": self.excused,
            "total_classes": self.total_classes,
            "deficit": round(self.deficit, 2),
            "eligible": self.eligible,
            "required_percentage": self.required_percentage,
            "has_data": self.has_data,
        }


def evaluate(t: AttendanceTally, threshold: float = DEFAULT_THRESHOLD) -> EligibilityResult:
    pct = t.percentage
    eligible = pct >= threshold
    return EligibilityResult(
        percentage=pct,
        present=t.present,
        absent=t.absent,
        excused=t.excused,
        total_classes=t.total,
        deficit=0.0 if eligible else threshold - pct,
        eligible=eligible,
        required_percentage=threshold,
    )


# ---------- источники данных ----------
class AttendanceRepository(Protocol):
    def statuses_for(self, student_id: int, course_id: int) -> Sequence[Any]: ...
    def course_tally(self, course_id: int) -> AttendanceTally: ...
    def session_dates(self, course_id: int) -> Sequence[Any]: ...

class RosterRepository(Protocol):
    def roster(self, course_id: int) -> Sequence[Any]: ...

class CourseRepository(Protocol):
    def department_courses(self, department: str) -> Sequence[Any]: ...
    def schedules_for(self, course_id: int) -> Sequence[Any]: ...


# ---------- сводки ----------
@dataclass
class StudentAttendance:
    student: Any
    result: EligibilityResult

@dataclass
class CourseSummary:
    course_id: int
    student_count: int
    total_classes: int
    average_attendance: float
    session_dates: list = field(default_factory=list)
    students: list[StudentAttendance] = field(default_factory=list)

@dataclass
class CourseOverview:
    course: Any
    tally: AttendanceTally
    class_sessions: int
    student_count: int
    at_risk_student_count: int
    schedules: list = field(default_factory=list)

    @property
    def bulk_attendance_rate(self) -> float:
        # по всем записям курса сразу, не среднее по студентам
        return self.tally.percentage

@dataclass
class DepartmentOverview:
    department: str
    courses: list[CourseOverview]

    @property
    def total_schedules(self) -> int:
        return sum(len(c.schedules) for c in self.courses)

    @property
    def average_attendance(self) -> float:
        if not self.courses:
            return 0.0
        return sum(c.bulk_attendance_rate for c in self.courses) / len(self.courses)

    @property
    def total_at_risk_students(self) -> int:
        return sum(c.at_risk_student_count for c in self.courses)

@dataclass
class AtRiskEntry:
    student: Any
    course: Any
    result: EligibilityResult
    schedules: list = field(default_factory=list)

@dataclass
class AtRiskReport:
    department: str
    threshold: float
    entries: list[AtRiskEntry]

    @property
    def total_at_risk(self) -> int:
        return len(self.entries)

    @property
    def unique_students(self) -> int:
        return len({e.student.id for e in self.entries})

    def by_course(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for e in self.entries:
            out[e.course.code] = out.get(e.course.code, 0) + 1
        return out


class EligibilityEngine:
    """Считает допуск по одной паре (студент, курс) и строит из этого сводки.

    Кэша нет: каждая сводка заново пересчитывает каждого студента.
    """

    def __init__(self, attendance: AttendanceRepository, roster: RosterRepository,
                 courses: CourseRepository, threshold: float = DEFAULT_THRESHOLD):
        self.attendance = attendance
        self.roster = roster
        self.courses = courses
        self.threshold = threshold

    def compute(self, student_id: int, course_id: int, threshold: Optional[float] = None) -> EligibilityResult:
        rows = self.attendance.statuses_for(student_id, course_id)
        return evaluate(tally(rows), self.threshold if threshold is None else threshold)

    def course_summary(self, course_id: int, threshold: Optional[float] = None) -> CourseSummary:
        students = [
            StudentAttendance(student=st, result=self.compute(st.id, course_id, threshold))
            for st in self.roster.roster(course_id)
        ]
        avg = sum(s.result.percentage for s in students) / len(students) if students else 0.0
        return CourseSummary(
            course_id=course_id,
            student_count=len(students),
            total_classes=max((s.result.total_classes for s in students), default=0),
            average_attendance=avg,
            session_dates=sorted(self.attendance.session_dates(course_id)),
            students=students,
        )

    def department_overview(self, department: str, threshold: Optional[float] = None) -> DepartmentOverview:
        items = []
        for course in self.courses.department_courses(department):
            roster = self.roster.roster(course.id)
            sessions = len(self.attendance.session_dates(course.id))
            at_risk = 0
            # курс без занятий или без студентов в зону риска никого не добавляет
            if sessions and roster:
                at_risk = sum(1 for st in roster if not self.compute(st.id, course.id, threshold).eligible)
            items.append(CourseOverview(
                course=course,
                tally=self.attendance.course_tally(course.id),
                class_sessions=sessions,
                student_count=len(roster),
                at_risk_student_count=at_risk,
                schedules=list(self.courses.schedules_for(course.id)),
            ))
        return DepartmentOverview(department=department, courses=items)

    def at_risk_report(self, department: str, threshold: Optional[float] = None) -> AtRiskReport:
        limit = self.threshold if threshold is None else threshold
        entries = []
        for course in self.courses.department_courses(department):
            schedules = list(self.courses.schedules_for(course.id))
            for st in self.roster.roster(course.id):
                result = self.compute(st.id, course.id, limit)
                if not result.eligible:
                    entries.append(AtRiskEntry(student=st, course=course, result=result, schedules=schedules))
        return AtRiskReport(department=department, threshold=limit, entries=entries)
