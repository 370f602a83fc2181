# blueprints/attendance/routes.py
from __future__ import annotations
from typing import Optional

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user

from models import UserRole
from blueprints.auth.routes import roles_required
from blueprints.core.clock import requested_term
from blueprints.core.errors import ValidationError
from . import services as svc
from .schemas import AttendanceUpdateIn, MarkAttendanceIn

api_bp = Blueprint("attendance_api", __name__)

INSTRUCTOR = UserRole.INSTRUCTOR.value
STUDENT = UserRole.STUDENT.value
MANAGERS = (UserRole.DEPARTMENT_HEAD.value, UserRole.REGISTRAR.value)

def _threshold() -> Optional[float]:
    raw = request.args.get("threshold")
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError("threshold must be a number", details={"threshold": raw})
    if not 0 <= value <= 100:
        raise ValidationError("threshold must be between 0 and 100", details={"threshold": raw})
    return value

def _department() -> str:
    department = request.args.get("department") or current_user.department
    if not department:
        raise ValidationError("department is required")
    return department

# ---------- отметка и правка ----------
@api_bp.post("/attendance/mark")
@roles_required(INSTRUCTOR)
def mark():
    data = MarkAttendanceIn.model_validate(request.get_json(silent=True) or {})
    return jsonify({"ok": True, **svc.mark_attendance(data, current_user)}), 201

@api_bp.put("/attendance/<int:aid>")
@roles_required(INSTRUCTOR, *MANAGERS)
def update(aid: int):
    data = AttendanceUpdateIn.model_validate(request.get_json(silent=True) or {})
    return jsonify({"ok": True, "record": svc.update_attendance(aid, data, current_user)})

# ---------- преподаватель ----------
@api_bp.get("/attendance/instructor/courses")
@roles_required(INSTRUCTOR)
def instructor_courses():
    year, sem = requested_term()
    items = svc.instructor_courses(current_user, year, sem)
    return jsonify({"ok": True, "academic_year": year, "semester": sem, "count": len(items), "courses": items})

@api_bp.get("/attendance/students/<int:course_id>")
@roles_required(INSTRUCTOR)
def students_for_marking(course_id: int):
    return jsonify({"ok": True, **svc.students_for_marking(course_id, current_user, request.args.get("date"))})

# ---------- студент ----------
@api_bp.get("/attendance/student/<int:course_id>")
@roles_required(STUDENT)
def my_course_attendance(course_id: int):
    return jsonify({"ok": True, **svc.student_course_attendance(current_user, course_id)})

@api_bp.get("/attendance/student/all")
@roles_required(STUDENT)
def my_attendance():
    return jsonify({"ok": True, **svc.student_all_attendance(current_user)})

# ---------- отчёты ----------
@api_bp.get("/attendance/eligibility/<int:course_id>/<int:student_id>")
@login_required
def eligibility(course_id: int, student_id: int):
    return jsonify({"ok": True, **svc.eligibility_for(course_id, student_id, current_user, _threshold())})

@api_bp.get("/attendance/report/<int:course_id>")
@roles_required(INSTRUCTOR, *MANAGERS)
def course_report(course_id: int):
    return jsonify({"ok": True, **svc.course_report(course_id, current_user, request.args.get("date"))})

@api_bp.get("/attendance/department/overview")
@roles_required(*MANAGERS)
def department_overview():
    return jsonify({"ok": True, **svc.department_overview(_department(), _threshold())})

@api_bp.get("/attendance/at-risk")
@roles_required(*MANAGERS)
def at_risk():
    return jsonify({"ok": True, **svc.at_risk_report(_department(), _threshold())})
