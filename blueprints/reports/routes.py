# blueprints/reports/routes.py
from __future__ import annotations
from flask import Blueprint, request, Response
from flask_login import current_user

from extensions import db
from models import Course, UserRole
from blueprints.auth.routes import roles_required
from blueprints.core.clock import requested_term
from blueprints.core.errors import NotFoundError, ValidationError, ForbiddenError
from blueprints.attendance.services import assigned_slot

from .services import at_risk_csv, course_attendance_csv, department_schedule_csv

api_bp = Blueprint("reports_api", __name__)

MANAGERS = (UserRole.DEPARTMENT_HEAD.value, UserRole.REGISTRAR.value)

def _csv_resp(content: str, filename: str) -> Response:
    return Response(
        content,
        mimetype="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )

def _department() -> str:
    department = request.args.get("department") or current_user.department
    if not department:
        raise ValidationError("department is required")
    return department

@api_bp.get("/reports/attendance/<int:course_id>.csv")
@roles_required(UserRole.INSTRUCTOR.value, *MANAGERS)
def course_attendance(course_id: int):
    course = db.session.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found", details={"course_id": course_id})
    if current_user.has_role(UserRole.INSTRUCTOR) and not assigned_slot(course_id, current_user.id):
        raise ForbiddenError("You are not assigned to this course", details={"course_id": course_id})
    return _csv_resp(course_attendance_csv(course), f"attendance_{course.code}.csv")

@api_bp.get("/reports/at-risk.csv")
@roles_required(*MANAGERS)
def at_risk():
    department = _department()
    return _csv_resp(at_risk_csv(department), f"at_risk_{department}.csv")

@api_bp.get("/reports/schedule.csv")
@roles_required(*MANAGERS)
def department_schedule():
    department = _department()
    year, sem = requested_term()
    return _csv_resp(department_schedule_csv(department, year, sem), f"schedule_{department}_{year}_{sem}.csv")
