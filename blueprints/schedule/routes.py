# blueprints/schedule/routes.py
from __future__ import annotations
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import UserRole
from blueprints.auth.routes import roles_required
from blueprints.core.clock import requested_term
from blueprints.core.errors import ValidationError
from blueprints.schedule import services as svc
from .conflicts import SlotCandidate, TimeSlot
from .schemas import AvailabilityQuery, ConflictCheckIn, ScheduleIn, ScheduleUpdate

api_bp = Blueprint("schedule_api", __name__)

MANAGERS = (UserRole.DEPARTMENT_HEAD.value, UserRole.REGISTRAR.value)

def _json() -> dict:
    return request.get_json(silent=True) or {}

# ---------- CRUD ----------
@api_bp.post("/schedule")
@roles_required(*MANAGERS)
def create_schedule():
    data = ScheduleIn.model_validate(_json())
    s = svc.create_slot(data, current_user.id)
    return jsonify({"ok": True, "schedule": svc.slot_to_dict(s)}), 201

@api_bp.put("/schedule/<int:sid>")
@roles_required(*MANAGERS)
def update_schedule(sid: int):
    patch = ScheduleUpdate.model_validate(_json())
    s = svc.update_slot(sid, patch, current_user.id)
    return jsonify({"ok": True, "schedule": svc.slot_to_dict(s)})

@api_bp.delete("/schedule/<int:sid>")
@roles_required(*MANAGERS)
def delete_schedule(sid: int):
    return jsonify({"ok": True, **svc.delete_slot(sid, current_user.id)})

@api_bp.post("/schedule/check-conflicts")
@roles_required(*MANAGERS)
def check_conflicts():
    data = ConflictCheckIn.model_validate(_json())
    candidate = SlotCandidate(
        instructor_id=data.instructor_id,
        room_number=data.room_number,
        slot=TimeSlot.parse(data.day_of_week, data.start_time, data.end_time),
        academic_year=data.academic_year,
        semester=data.semester,
    )
    report = svc.check_conflicts(candidate, exclude_id=data.exclude_id)
    return jsonify({"ok": True, **svc.report_to_dict(report)})

# ---------- свободные ресурсы ----------
def _availability() -> tuple[TimeSlot, str, int, AvailabilityQuery]:
    q = AvailabilityQuery.model_validate(request.args.to_dict())
    year, sem = requested_term()
    return TimeSlot.parse(q.day_of_week, q.start_time, q.end_time), q.academic_year or year, q.semester or sem, q

@api_bp.get("/schedule/available-instructors")
@roles_required(*MANAGERS)
def available_instructors():
    slot, year, sem, q = _availability()
    items = svc.available_instructors(slot, year, sem, q.department)
    return jsonify({"ok": True, "count": len(items), "instructors": items})

@api_bp.get("/schedule/available-rooms")
@roles_required(*MANAGERS)
def available_rooms():
    slot, year, sem, _ = _availability()
    rooms = svc.available_rooms(slot, year, sem)
    return jsonify({"ok": True, "count": len(rooms), "rooms": rooms})

# ---------- представления ----------
@api_bp.get("/schedule/course/<int:course_id>")
@login_required
def course_schedule(course_id: int):
    raw_sem = request.args.get("semester")
    data = svc.course_schedule(
        course_id,
        academic_year=request.args.get("academic_year"),
        semester=int(raw_sem) if raw_sem in ("1", "2") else None,
    )
    return jsonify({"ok": True, **data})

@api_bp.get("/schedule/instructor")
@roles_required(UserRole.INSTRUCTOR.value)
def my_instructor_schedule():
    year, sem = requested_term()
    return jsonify({"ok": True, **svc.instructor_schedule(current_user.id, year, sem)})

@api_bp.get("/schedule/student")
@roles_required(UserRole.STUDENT.value)
def my_student_schedule():
    year, sem = requested_term()
    return jsonify({"ok": True, **svc.student_schedule(current_user.id, year, sem)})

@api_bp.get("/schedule/department")
@roles_required(*MANAGERS)
def department_schedule():
    department = request.args.get("department") or current_user.department
    if not department:
        raise ValidationError("department is required")
    year, sem = requested_term()
    return jsonify({"ok": True, **svc.department_schedules(department, year, sem)})

@api_bp.get("/schedule/stats")
@roles_required(*MANAGERS)
def stats():
    year, sem = requested_term()
    return jsonify({"ok": True, **svc.schedule_stats(year, sem, request.args.get("department"))})
