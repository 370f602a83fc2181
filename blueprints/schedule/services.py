# blueprints/schedule/services.py
from __future__ import annotations
import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Attendance, ClassSchedule, Course, Registration, RegistrationStatus, User, UserRole
from blueprints.core.audit import record_audit
from blueprints.core.clock import DAYS
from blueprints.core.errors import ConflictError, NotFoundError
from .conflicts import ConflictEngine, ConflictReport, SlotCandidate, TimeSlot, format_minutes, intervals_overlap, to_minutes
from .repository import SqlSlotRepository, lock_slot_resources
from .schemas import ScheduleIn, ScheduleUpdate

log = logging.getLogger(__name__)

# поля, изменение которых требует повторной проверки пересечений
OVERLAP_FIELDS = {"instructor_id", "day_of_week", "start_time", "end_time", "room_number"}


def conflict_engine() -> ConflictEngine:
    return ConflictEngine(SqlSlotRepository())

# ---------- сериализация ----------
def hhmm(t) -> str:
    return format_minutes(to_minutes(t))

def slot_to_dict(s: ClassSchedule) -> dict:
    return {
        "id": s.id,
        "course": ({"id": s.course.id, "code": s.course.code, "name": s.course.name} if s.course else None),
        "instructor": ({"id": s.instructor.id, "name": s.instructor.full_name} if s.instructor else None),
        "academic_year": s.academic_year,
        "semester": s.semester,
        "department": s.department,
        "day_of_week": s.day_of_week,
        "start_time": hhmm(s.start_time),
        "end_time": hhmm(s.end_time),
        "duration_minutes": s.duration_minutes,
        "room_number": s.room_number,
        "is_active": s.is_active,
        "notes": s.notes,
    }

def _conflict_item(s: ClassSchedule) -> dict:
    course = f"{s.course.code} - {s.course.name}" if s.course else None
    return {
        "id": s.id,
        "course": course,
        "day": s.day_of_week,
        "time": f"{hhmm(s.start_time)} - {hhmm(s.end_time)}",
    }

def report_to_dict(report: ConflictReport) -> dict:
    return {
        "has_conflicts": report.has_conflicts,
        "instructor_conflicts": [_conflict_item(s) for s in report.instructor_conflicts],
        "room_conflicts": [_conflict_item(s) for s in report.room_conflicts],
    }

def day_sort_key(s: ClassSchedule):
    return (DAYS.index(s.day_of_week) if s.day_of_week in DAYS else len(DAYS), s.start_time)

def group_by_day(rows: List[ClassSchedule]) -> Dict[str, List[dict]]:
    out: Dict[str, List[dict]] = {}
    for s in sorted(rows, key=day_sort_key):
        out.setdefault(s.day_of_week, []).append(slot_to_dict(s))
    return out

# ---------- проверки ----------
def _get_course(course_id: int) -> Course:
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found", details={"course_id": course_id})
    return course

def _get_instructor(instructor_id: int) -> User:
    user = db.session.get(User, instructor_id)
    if not user or not user.has_role(UserRole.INSTRUCTOR):
        raise NotFoundError("Instructor not found or invalid role", details={"instructor_id": instructor_id})
    return user

def _get_slot(sid: int) -> ClassSchedule:
    s = db.session.get(ClassSchedule, sid)
    if not s:
        raise NotFoundError("Schedule not found", details={"id": sid})
    return s

def check_conflicts(candidate: SlotCandidate, exclude_id: Optional[int] = None) -> ConflictReport:
    return conflict_engine().check(candidate, exclude_id=exclude_id)

def _ensure_free(candidate: SlotCandidate, exclude_id: Optional[int] = None) -> None:
    lock_slot_resources(candidate)
    report = check_conflicts(candidate, exclude_id=exclude_id)
    if report.has_conflicts:
        raise ConflictError("Schedule conflict detected", details=report_to_dict(report))

def _flush_or_conflict() -> None:
    # уникальные индексы ловят гонку двух одновременных вставок
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Schedule conflict detected",
            details={"has_conflicts": True, "reason": "slot already taken"},
        ) from exc

# ---------- CRUD ----------
def create_slot(data: ScheduleIn, actor_id: Optional[int]) -> ClassSchedule:
    _get_course(data.course_id)
    _get_instructor(data.instructor_id)
    slot = TimeSlot.parse(data.day_of_week, data.start_time, data.end_time)
    candidate = SlotCandidate(
        instructor_id=data.instructor_id, room_number=data.room_number, slot=slot,
        academic_year=data.academic_year, semester=data.semester,
    )
    _ensure_free(candidate)

    s = ClassSchedule(
        course_id=data.course_id, instructor_id=data.instructor_id,
        academic_year=data.academic_year, semester=data.semester, department=data.department,
        day_of_week=slot.day_of_week, start_time=slot.start_time, end_time=slot.end_time,
        room_number=data.room_number, notes=data.notes, created_by=actor_id, is_active=True,
    )
    db.session.add(s)
    _flush_or_conflict()
    record_audit(actor_id, "SCHEDULE_CREATED", "class_schedule", s.id, data.model_dump())
    db.session.commit()
    log.info("schedule created", extra={"event": "schedule_created", "entity_id": s.id, "user_id": actor_id})
    return s

def update_slot(sid: int, patch: ScheduleUpdate, actor_id: Optional[int]) -> ClassSchedule:
    s = _get_slot(sid)
    changes = patch.model_dump(exclude_unset=True)
    before = slot_to_dict(s)

    if changes.get("instructor_id") is not None:
        _get_instructor(changes["instructor_id"])

    slot = TimeSlot.parse(
        changes.get("day_of_week") or s.day_of_week,
        changes.get("start_time") or s.start_time,
        changes.get("end_time") or s.end_time,
    )
    instructor_id = changes.get("instructor_id") or s.instructor_id
    room_number = changes.get("room_number") or s.room_number
    becomes_active = changes.get("is_active") is True and not s.is_active
    will_be_active = changes.get("is_active", s.is_active)

    if will_be_active and (becomes_active or OVERLAP_FIELDS & changes.keys()):
        candidate = SlotCandidate(
            instructor_id=instructor_id, room_number=room_number, slot=slot,
            academic_year=s.academic_year, semester=s.semester,
        )
        _ensure_free(candidate, exclude_id=s.id)

    s.instructor_id = instructor_id
    s.room_number = room_number
    s.day_of_week = slot.day_of_week
    s.start_time = slot.start_time
    s.end_time = slot.end_time
    if "notes" in changes:
        s.notes = changes["notes"]
    if changes.get("is_active") is not None:
        s.is_active = changes["is_active"]

    _flush_or_conflict()
    record_audit(actor_id, "SCHEDULE_UPDATED", "class_schedule", s.id, {"before": before, "changes": changes})
    db.session.commit()
    log.info("schedule updated", extra={"event": "schedule_updated", "entity_id": s.id, "user_id": actor_id})
    return s

def delete_slot(sid: int, actor_id: Optional[int]) -> dict:
    """Слот с отметками посещаемости только деактивируем, без них удаляем."""
    s = _get_slot(sid)
    attendance_count = db.session.scalar(
        db.select(func.count(Attendance.id)).where(Attendance.class_schedule_id == s.id)
    ) or 0

    if attendance_count:
        s.is_active = False
        record_audit(actor_id, "SCHEDULE_DEACTIVATED", "class_schedule", s.id, {"attendance_count": attendance_count})
        db.session.commit()
        log.info("schedule deactivated", extra={"event": "schedule_deactivated", "entity_id": sid, "count": attendance_count})
        return {"deleted": False, "deactivated": True, "attendance_count": attendance_count}

    payload = slot_to_dict(s)
    db.session.delete(s)
    record_audit(actor_id, "SCHEDULE_DELETED", "class_schedule", sid, payload)
    db.session.commit()
    log.info("schedule deleted", extra={"event": "schedule_deleted", "entity_id": sid})
    return {"deleted": True, "deactivated": False, "attendance_count": 0}

# ---------- свободные ресурсы ----------
def _busy_rows(slot: TimeSlot, academic_year: str, semester: int) -> List[ClassSchedule]:
    rows = SqlSlotRepository().find_active(day_of_week=slot.day_of_week, academic_year=academic_year, semester=semester)
    return [r for r in rows
            if intervals_overlap(slot.start, slot.end, to_minutes(r.start_time), to_minutes(r.end_time))]

def available_instructors(slot: TimeSlot, academic_year: str, semester: int,
                          department: Optional[str] = None) -> List[dict]:
    busy = {r.instructor_id for r in _busy_rows(slot, academic_year, semester)}
    q = User.query.filter(User.role == UserRole.INSTRUCTOR.value, User.is_active.is_(True))
    if department:
        q = q.filter(User.department == department)
    return [
        {"id": u.id, "name": u.full_name, "email": u.email, "department": u.department}
        for u in q.order_by(User.first_name, User.id).all()
        if u.id not in busy
    ]

def available_rooms(slot: TimeSlot, academic_year: str, semester: int) -> List[str]:
    busy = {r.room_number for r in _busy_rows(slot, academic_year, semester)}
    rooms = db.session.scalars(db.select(ClassSchedule.room_number).distinct()).all()
    return sorted(r for r in rooms if r not in busy)

# ---------- представления ----------
def _active_in_term(academic_year: str, semester: int):
    return ClassSchedule.query.filter(
        ClassSchedule.academic_year == academic_year,
        ClassSchedule.semester == semester,
        ClassSchedule.is_active.is_(True),
    )

def course_schedule(course_id: int, academic_year: Optional[str] = None, semester: Optional[int] = None) -> dict:
    course = _get_course(course_id)
    q = ClassSchedule.query.filter(ClassSchedule.course_id == course_id, ClassSchedule.is_active.is_(True))
    if academic_year:
        q = q.filter(ClassSchedule.academic_year == academic_year)
    if semester:
        q = q.filter(ClassSchedule.semester == semester)
    rows = sorted(q.all(), key=day_sort_key)
    if not rows:
        raise NotFoundError("No schedule found for this course", details={"course_id": course_id})
    return {
        "course": {"id": course.id, "code": course.code, "name": course.name},
        "schedules": [slot_to_dict(s) for s in rows],
    }

def instructor_schedule(instructor_id: int, academic_year: str, semester: int) -> dict:
    rows = _active_in_term(academic_year, semester).filter(ClassSchedule.instructor_id == instructor_id).all()
    minutes = sum(s.duration_minutes for s in rows)
    return {
        "academic_year": academic_year,
        "semester": semester,
        "total_classes": len(rows),
        "total_hours_per_week": round(minutes / 60, 1),
        "schedule": group_by_day(rows),
    }

def student_schedule(student_id: int, academic_year: str, semester: int) -> dict:
    regs = Registration.query.filter(
        Registration.student_id == student_id,
        Registration.status != RegistrationStatus.CANCELLED,
    ).all()
    if not regs:
        raise NotFoundError("No active registration found", details={"student_id": student_id})
    course_ids = sorted({c.id for r in regs for c in r.courses})
    rows = _active_in_term(academic_year, semester).filter(ClassSchedule.course_id.in_(course_ids)).all() if course_ids else []
    return {
        "academic_year": academic_year,
        "semester": semester,
        "course_ids": course_ids,
        "total_classes": len(rows),
        "schedule": group_by_day(rows),
    }

def department_schedules(department: str, academic_year: str, semester: int) -> dict:
    rows = _active_in_term(academic_year, semester).filter(ClassSchedule.department == department).all()
    instructors = {s.instructor_id: s.instructor.full_name for s in rows if s.instructor}
    return {
        "department": department,
        "academic_year": academic_year,
        "semester": semester,
        "total": len(rows),
        "schedule": group_by_day(rows),
        "filters": {
            "rooms": sorted({s.room_number for s in rows}),
            "instructors": [{"id": k, "name": v} for k, v in sorted(instructors.items())],
        },
    }

def schedule_stats(academic_year: str, semester: int, department: Optional[str] = None) -> dict:
    q = _active_in_term(academic_year, semester)
    if department:
        q = q.filter(ClassSchedule.department == department)
    rows = q.all()

    by_department: Dict[str, int] = defaultdict(int)
    by_day: Dict[str, int] = {d: 0 for d in DAYS}
    rooms: Dict[str, dict] = {}
    load: Dict[int, dict] = {}
    for s in rows:
        by_department[s.department] += 1
        by_day[s.day_of_week] = by_day.get(s.day_of_week, 0) + 1
        r = rooms.setdefault(s.room_number, {"room_number": s.room_number, "classes": 0, "minutes": 0})
        r["classes"] += 1
        r["minutes"] += s.duration_minutes
        i = load.setdefault(s.instructor_id, {
            "instructor_id": s.instructor_id,
            "name": s.instructor.full_name if s.instructor else None,
            "classes": 0, "minutes": 0,
        })
        i["classes"] += 1
        i["minutes"] += s.duration_minutes

    def _hours(items):
        out = []
        for it in items:
            it = dict(it)
            it["hours"] = round(it.pop("minutes") / 60, 1)
            out.append(it)
        return out

    return {
        "academic_year": academic_year,
        "semester": semester,
        "total": len(rows),
        "by_department": dict(by_department),
        "by_day": by_day,
        "room_utilization": sorted(_hours(rooms.values()), key=lambda x: (-x["classes"], x["room_number"])),
        "instructor_load": sorted(_hours(load.values()), key=lambda x: (-x["classes"], x["instructor_id"])),
    }
