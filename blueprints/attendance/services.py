# blueprints/attendance/services.py
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Attendance, AttendanceStatus, ClassSchedule, Course, User, UserRole
from blueprints.core.audit import record_audit
from blueprints.core.clock import institution_today, institution_tz, parse_session_date, weekday_name
from blueprints.core.errors import ForbiddenError, NotFoundError, ValidationError
from blueprints.core.notifications import notify
from blueprints.schedule.services import slot_to_dict
from .eligibility import (
    DEFAULT_THRESHOLD, AtRiskReport, CourseSummary, DepartmentOverview,
    EligibilityEngine, EligibilityResult, round_display,
)
from .repository import SqlAttendanceRepository, SqlCourseRepository, SqlRosterRepository
from .schemas import AttendanceUpdateIn, MarkAttendanceIn

log = logging.getLogger(__name__)

NOT_MARKED = "not_marked"


def engine() -> EligibilityEngine:
    return EligibilityEngine(
        SqlAttendanceRepository(), SqlRosterRepository(), SqlCourseRepository(),
        threshold=current_app.config.get("ATTENDANCE_THRESHOLD", DEFAULT_THRESHOLD),
    )

# ---------- сериализация ----------
def student_json(u: User) -> dict:
    return {"id": u.id, "name": u.full_name, "student_number": u.student_number, "email": u.email}

def course_json(c: Course) -> dict:
    return {"id": c.id, "code": c.code, "name": c.name, "department": c.department}

def record_json(r: Attendance) -> dict:
    return {
        "id": r.id,
        "student_id": r.student_id,
        "course_id": r.course_id,
        "class_schedule_id": r.class_schedule_id,
        "date": r.date.isoformat(),
        "status": AttendanceStatus(r.status).value,
        "notes": r.notes,
        "last_updated": r.last_updated.isoformat() if r.last_updated else None,
    }

def summary_json(summary: CourseSummary) -> dict:
    return {
        "student_count": summary.student_count,
        "total_classes": summary.total_classes,
        "average_attendance": round_display(summary.average_attendance),
        "session_dates": [d.isoformat() for d in summary.session_dates],
        "students": [{"student": student_json(s.student), **s.result.to_dict()} for s in summary.students],
    }

def overview_json(ov: DepartmentOverview) -> dict:
    return {
        "department": ov.department,
        "courses": [
            {
                "course": course_json(c.course),
                "bulk_attendance_rate": round_display(c.bulk_attendance_rate),
                "present_count": c.tally.present,
                "absent_count": c.tally.absent,
                "excused_count": c.tally.excused,
                "class_sessions": c.class_sessions,
                "student_count": c.student_count,
                "at_risk_student_count": c.at_risk_student_count,
                "schedules": [slot_to_dict(s) for s in c.schedules],
            }
            for c in ov.courses
        ],
        "summary": {
            "total_courses": len(ov.courses),
            "total_schedules": ov.total_schedules,
            "average_attendance": round_display(ov.average_attendance),
            "total_at_risk_students": ov.total_at_risk_students,
        },
    }

def at_risk_json(report: AtRiskReport) -> dict:
    return {
        "department": report.department,
        "threshold": report.threshold,
        "students": [
            {
                "student": student_json(e.student),
                "course": course_json(e.course),
                "eligibility": e.result.to_dict(),
                "schedules": [slot_to_dict(s) for s in e.schedules],
            }
            for e in report.entries
        ],
        "summary": {
            "total_at_risk": report.total_at_risk,
            "unique_students": report.unique_students,
            "by_course": report.by_course(),
        },
    }

# ---------- проверки ----------
def _get_course(course_id: int) -> Course:
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found", details={"course_id": course_id})
    return course

def assigned_slot(course_id: int, instructor_id: int, day_of_week: Optional[str] = None) -> Optional[ClassSchedule]:
    q = ClassSchedule.query.filter(
        ClassSchedule.course_id == course_id,
        ClassSchedule.instructor_id == instructor_id,
        ClassSchedule.is_active.is_(True),
    )
    if day_of_week:
        q = q.filter(ClassSchedule.day_of_week == day_of_week)
    return q.order_by(ClassSchedule.start_time).first()

def _ensure_can_view_course(course_id: int, actor: User) -> None:
    if actor.has_role(UserRole.INSTRUCTOR) and not assigned_slot(course_id, actor.id):
        raise ForbiddenError("You are not assigned to this course", details={"course_id": course_id})

def _session_date(raw: Optional[str]) -> date:
    d = parse_session_date(raw, institution_tz())
    if d > institution_today():
        raise ValidationError("Cannot mark attendance for future dates", details={"date": d.isoformat()})
    return d

# ---------- отметка ----------
def _find_record(student_id: int, course_id: int, session_date: date) -> Optional[Attendance]:
    return Attendance.query.filter_by(student_id=student_id, course_id=course_id, date=session_date).first()

def _upsert(student_id: int, course_id: int, session_date: date, status: AttendanceStatus,
            notes: Optional[str], instructor_id: int, schedule_id: int) -> tuple[Attendance, bool]:
    """Одна запись на (студент, курс, дата): повторная отметка обновляет её."""
    row = _find_record(student_id, course_id, session_date)
    created = False
    if row is None:
        row = Attendance(
            student_id=student_id, course_id=course_id, date=session_date, status=status,
            notes=notes, instructor_id=instructor_id, class_schedule_id=schedule_id,
            updated_by=instructor_id,
        )
        try:
            with db.session.begin_nested():
                db.session.add(row)
            return row, True
        except IntegrityError:
            # параллельный запрос успел вставить ту же тройку
            row = _find_record(student_id, course_id, session_date)
    row.status = status
    row.notes = notes
    row.instructor_id = instructor_id
    row.class_schedule_id = schedule_id
    row.updated_by = instructor_id
    row.last_updated = datetime.utcnow()
    return row, created

def _warn_low_attendance(eng: EligibilityEngine, course: Course, student_ids: set[int], actor_id: int) -> int:
    floor = current_app.config.get("ATTENDANCE_WARNING_FLOOR", 60.0)
    sent = 0
    for sid in sorted(student_ids):
        result = eng.compute(sid, course.id)
        if floor <= result.percentage < result.required_percentage:
            notify(
                sid, "Low attendance warning",
                f"Your attendance in {course.code} is {result.display_percentage}%. "
                f"You need at least {result.required_percentage:g}% to sit the final exam.",
                type_="warning", link=f"/attendance/course/{course.id}", source="attendance", created_by=actor_id,
            )
            log.info("low attendance warning", extra={"event": "low_attendance_warning", "user_id": sid, "course_id": course.id})
            sent += 1
    return sent

def mark_attendance(data: MarkAttendanceIn, instructor: User) -> dict:
    course = _get_course(data.course_id)
    session_date = _session_date(data.date)
    day = weekday_name(session_date)

    schedule = assigned_slot(course.id, instructor.id, day)
    if not schedule:
        raise ForbiddenError(
            f"You are not scheduled to teach this course on {day}",
            details={"course_id": course.id, "day_of_week": day},
        )

    roster_ids = {u.id for u in SqlRosterRepository().roster(course.id)}
    if not roster_ids:
        raise NotFoundError("No students registered for this course", details={"course_id": course.id})
    unknown = sorted({r.student_id for r in data.records} - roster_ids)
    if unknown:
        raise ValidationError("Some students are not registered for this course", details={"student_ids": unknown})

    results = []
    counts = {"created": 0, "updated": 0}
    by_status = {s.value: 0 for s in AttendanceStatus}
    for rec in data.records:
        status = AttendanceStatus(rec.status)
        row, created = _upsert(rec.student_id, course.id, session_date, status, rec.notes, instructor.id, schedule.id)
        counts["created" if created else "updated"] += 1
        by_status[status.value] += 1
        results.append({"student_id": rec.student_id, "status": status.value, "created": created, "updated": not created})
        if status is AttendanceStatus.ABSENT:
            notify(
                rec.student_id, "Marked absent",
                f"You were marked absent in {course.code} on {session_date.isoformat()}.",
                type_="attendance", link=f"/attendance/course/{course.id}", source="attendance", created_by=instructor.id,
            )
    db.session.flush()

    warnings = _warn_low_attendance(engine(), course, {r.student_id for r in data.records}, instructor.id)
    record_audit(instructor.id, "ATTENDANCE_MARKED", "course", course.id, {
        "date": session_date.isoformat(), "total": len(results), **counts,
    })
    db.session.commit()
    log.info("attendance marked", extra={"event": "attendance_marked", "course_id": course.id, "count": len(results)})

    return {
        "course": course_json(course),
        "date": session_date.isoformat(),
        "day_of_week": day,
        "schedule": slot_to_dict(schedule),
        "summary": {"total": len(results), **counts, **by_status, "warnings_sent": warnings},
        "records": results,
    }

def update_attendance(aid: int, data: AttendanceUpdateIn, actor: User) -> dict:
    row = db.session.get(Attendance, aid)
    if not row:
        raise NotFoundError("Attendance record not found", details={"id": aid})
    if not row.can_be_updated(actor, institution_today()):
        raise ForbiddenError("You cannot update this attendance record", details={"id": aid})
    if actor.has_role(UserRole.INSTRUCTOR) and not assigned_slot(row.course_id, actor.id):
        raise ForbiddenError("You are not assigned to this course", details={"course_id": row.course_id})

    old = AttendanceStatus(row.status)
    new = AttendanceStatus(data.status)
    row.status = new
    if data.notes is not None:
        row.notes = data.notes
    row.updated_by = actor.id
    row.last_updated = datetime.utcnow()

    if new is AttendanceStatus.ABSENT and old is not AttendanceStatus.ABSENT:
        course = row.course
        notify(
            row.student_id, "Attendance updated",
            f"Your attendance in {course.code} on {row.date.isoformat()} was changed to absent.",
            type_="attendance", link=f"/attendance/course/{course.id}", source="attendance", created_by=actor.id,
        )
    record_audit(actor.id, "ATTENDANCE_UPDATED", "attendance", row.id, {"from": old.value, "to": new.value})
    db.session.commit()
    log.info("attendance updated", extra={"event": "attendance_updated", "entity_id": row.id, "user_id": actor.id})
    return record_json(row)

# ---------- просмотр ----------
def eligibility_for(course_id: int, student_id: int, actor: User, threshold: Optional[float] = None) -> dict:
    course = _get_course(course_id)
    if actor.has_role(UserRole.STUDENT) and actor.id != student_id:
        raise ForbiddenError("Students can only view their own eligibility")
    _ensure_can_view_course(course_id, actor)
    student = db.session.get(User, student_id)
    if not student or not SqlRosterRepository().is_registered(student_id, course_id):
        raise NotFoundError("Student is not registered for this course",
                            details={"student_id": student_id, "course_id": course_id})
    result = engine().compute(student_id, course_id, threshold)
    return {"student": student_json(student), "course": course_json(course), "eligibility": result.to_dict()}

def _stats(result: EligibilityResult) -> dict:
    return {
        "total_classes": result.total_classes,
        "present": result.present,
        "absent": result.absent,
        "excused": result.excused,
        "percentage": result.display_percentage,
    }

def student_course_attendance(student: User, course_id: int) -> dict:
    course = _get_course(course_id)
    if not SqlRosterRepository().is_registered(student.id, course_id):
        raise ForbiddenError("You are not registered for this course", details={"course_id": course_id})
    result = engine().compute(student.id, course_id)
    records = Attendance.query.filter_by(student_id=student.id, course_id=course_id).order_by(Attendance.date.desc()).all()
    return {
        "course": course_json(course),
        "schedules": [slot_to_dict(s) for s in SqlCourseRepository().schedules_for(course_id)],
        "stats": _stats(result),
        "eligibility": result.to_dict(),
        "records": [record_json(r) for r in records],
    }

def student_all_attendance(student: User) -> dict:
    eng = engine()
    courses = []
    for c in SqlRosterRepository().student_courses(student.id):
        result = eng.compute(student.id, c.id)
        courses.append({
            "course": course_json(c),
            "schedules": [slot_to_dict(s) for s in SqlCourseRepository().schedules_for(c.id)],
            "stats": _stats(result),
            "eligibility": result.to_dict(),
            "_raw": result.percentage,
        })
    overall = sum(c.pop("_raw") for c in courses) / len(courses) if courses else 0.0
    return {
        "courses": courses,
        "overall_attendance": round_display(overall),
        "total_courses": len(courses),
        "at_risk_courses": sum(1 for c in courses if not c["eligibility"]["eligible"]),
    }

def course_report(course_id: int, actor: User, date_raw: Optional[str] = None) -> dict:
    course = _get_course(course_id)
    _ensure_can_view_course(course_id, actor)
    roster = SqlRosterRepository().roster(course_id)
    if not roster:
        raise NotFoundError("No students registered for this course", details={"course_id": course_id})

    out = {"course": course_json(course), "summary": summary_json(engine().course_summary(course_id))}
    if date_raw:
        day = parse_session_date(date_raw, institution_tz())
        marked = SqlAttendanceRepository().records_on(course_id, day)
        sheet = []
        for st in roster:
            r = marked.get(st.id)
            sheet.append({
                "student": student_json(st),
                "status": AttendanceStatus(r.status).value if r else NOT_MARKED,
                "notes": r.notes if r else None,
            })
        out["daily"] = {"date": day.isoformat(), "day_of_week": weekday_name(day), "records": sheet}
    return out

def instructor_courses(instructor: User, academic_year: str, semester: int) -> list[dict]:
    rows = ClassSchedule.query.filter(
        ClassSchedule.instructor_id == instructor.id,
        ClassSchedule.academic_year == academic_year,
        ClassSchedule.semester == semester,
        ClassSchedule.is_active.is_(True),
    ).all()
    roster = SqlRosterRepository()
    by_course: dict[int, dict] = {}
    for s in rows:
        item = by_course.get(s.course_id)
        if item is None:
            item = by_course[s.course_id] = {
                "course": course_json(s.course),
                "schedules": [],
                "student_count": len(roster.roster(s.course_id)),
            }
        item["schedules"].append(slot_to_dict(s))
    return sorted(by_course.values(), key=lambda x: x["course"]["code"])

def students_for_marking(course_id: int, instructor: User, date_raw: Optional[str] = None) -> dict:
    course = _get_course(course_id)
    if not assigned_slot(course_id, instructor.id):
        raise ForbiddenError("You are not assigned to this course", details={"course_id": course_id})
    day = parse_session_date(date_raw, institution_tz())
    marked = SqlAttendanceRepository().records_on(course_id, day)
    students = []
    for st in SqlRosterRepository().roster(course_id):
        r = marked.get(st.id)
        students.append({
            "student": student_json(st),
            "status": AttendanceStatus(r.status).value if r else NOT_MARKED,
            "notes": r.notes if r else None,
            "attendance_id": r.id if r else None,
        })
    return {
        "course": course_json(course),
        "date": day.isoformat(),
        "day_of_week": weekday_name(day),
        "students": students,
    }

def department_overview(department: str, threshold: Optional[float] = None) -> dict:
    ov = engine().department_overview(department, threshold)
    if not ov.courses:
        raise NotFoundError("No courses found for this department", details={"department": department})
    return overview_json(ov)

def at_risk_report(department: str, threshold: Optional[float] = None) -> dict:
    return at_risk_json(engine().at_risk_report(department, threshold))
