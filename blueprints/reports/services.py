# blueprints/reports/services.py
from __future__ import annotations
from io import StringIO
import csv
from typing import Optional

from models import ClassSchedule, Course
from blueprints.attendance.eligibility import round_display
from blueprints.attendance.services import engine
from blueprints.schedule.services import day_sort_key, hhmm

def _fmt(value: float) -> str:
    return f"{round_display(value):.1f}"

def course_attendance_csv(course: Course, threshold: Optional[float] = None) -> str:
    """
    CSV: student_number;student;present;absent;excused;total_classes;percentage;eligible;deficit
    Проценты округлены до 0.1, допуск считается по сырому проценту.
    """
    summary = engine().course_summary(course.id, threshold)
    buf = StringIO()
    w = csv.writer(buf, delimiter=";")
    w.writerow(["student_number", "student", "present", "absent", "excused",
                "total_classes", "percentage", "eligible", "deficit"])
    for s in summary.students:
        r = s.result
        w.writerow([
            s.student.student_number or "",
            s.student.full_name,
            r.present, r.absent, r.excused, r.total_classes,
            _fmt(r.percentage),
            "yes" if r.eligible else "no",
            f"{r.deficit:.2f}",
        ])
    w.writerow([])
    w.writerow(["course", course.code, "students", summary.student_count,
                "total_classes", summary.total_classes, "average", _fmt(summary.average_attendance)])
    return buf.getvalue()

def at_risk_csv(department: str, threshold: Optional[float] = None) -> str:
    """
    CSV: course_code;course;student_number;student;percentage;deficit;total_classes
    Студент в зоне риска по двум курсам даёт две строки.
    """
    report = engine().at_risk_report(department, threshold)
    buf = StringIO()
    w = csv.writer(buf, delimiter=";")
    w.writerow(["course_code", "course", "student_number", "student", "percentage", "deficit", "total_classes"])
    for e in report.entries:
        w.writerow([
            e.course.code, e.course.name,
            e.student.student_number or "", e.student.full_name,
            _fmt(e.result.percentage), f"{e.result.deficit:.2f}", e.result.total_classes,
        ])
    return buf.getvalue()

def department_schedule_csv(department: str, academic_year: str, semester: int) -> str:
    """
    CSV: day;start;end;course_code;course;instructor;room
    """
    rows = ClassSchedule.query.filter(
        ClassSchedule.department == department,
        ClassSchedule.academic_year == academic_year,
        ClassSchedule.semester == semester,
        ClassSchedule.is_active.is_(True),
    ).all()
    buf = StringIO()
    w = csv.writer(buf, delimiter=";")
    w.writerow(["day", "start", "end", "course_code", "course", "instructor", "room"])
    for s in sorted(rows, key=day_sort_key):
        w.writerow([
            s.day_of_week, hhmm(s.start_time), hhmm(s.end_time),
            s.course.code, s.course.name,
            s.instructor.full_name if s.instructor else "",
            s.room_number,
        ])
    return buf.getvalue()
