from __future__ import annotations

from sqlalchemy import func

from extensions import db
from models import (
    Attendance, AttendanceStatus, ClassSchedule, Course, Registration,
    RegistrationStatus, User, registration_courses,
)
from .eligibility import AttendanceTally


class SqlAttendanceRepository:
    def statuses_for(self, student_id: int, course_id: int) -> list[AttendanceStatus]:
        return list(db.session.scalars(
            db.select(Attendance.status).where(
                Attendance.student_id == student_id, Attendance.course_id == course_id,
            )
        ))

    def course_tally(self, course_id: int) -> AttendanceTally:
        rows = db.session.execute(
            db.select(Attendance.status, func.count(Attendance.id))
            .where(Attendance.course_id == course_id)
            .group_by(Attendance.status)
        ).all()
        counts = {AttendanceStatus(status): n for status, n in rows}
        return AttendanceTally(
            present=counts.get(AttendanceStatus.PRESENT, 0),
            absent=counts.get(AttendanceStatus.ABSENT, 0),
            excused=counts.get(AttendanceStatus.EXCUSED, 0),
        )

    def session_dates(self, course_id: int) -> list:
        return list(db.session.scalars(
            db.select(Attendance.date).where(Attendance.course_id == course_id)
            .distinct().order_by(Attendance.date)
        ))

    def records_on(self, course_id: int, session_date) -> dict[int, Attendance]:
        rows = Attendance.query.filter_by(course_id=course_id, date=session_date).all()
        return {r.student_id: r for r in rows}


class SqlRosterRepository:
    """Студенты курса: все, у кого есть не отменённая регистрация с этим курсом."""

    def _query(self, course_id: int):
        return (
            db.select(User)
            .join(Registration, Registration.student_id == User.id)
            .join(registration_courses, registration_courses.c.registration_id == Registration.id)
            .where(
                registration_courses.c.course_id == course_id,
                Registration.status != RegistrationStatus.CANCELLED,
            )
        )

    def roster(self, course_id: int) -> list[User]:
        return list(db.session.scalars(
            self._query(course_id).distinct().order_by(User.first_name, User.father_name, User.id)
        ))

    def is_registered(self, student_id: int, course_id: int) -> bool:
        stmt = self._query(course_id).where(User.id == student_id).limit(1)
        return db.session.scalars(stmt).first() is not None

    def student_courses(self, student_id: int) -> list[Course]:
        regs = Registration.query.filter(
            Registration.student_id == student_id,
            Registration.status != RegistrationStatus.CANCELLED,
        ).all()
        seen: dict[int, Course] = {}
        for r in regs:
            for c in r.courses:
                seen.setdefault(c.id, c)
        return sorted(seen.values(), key=lambda c: c.code)


class SqlCourseRepository:
    def department_courses(self, department: str) -> list[Course]:
        return Course.query.filter(
            Course.department == department, Course.is_active.is_(True),
        ).order_by(Course.year, Course.semester, Course.code).all()

    def schedules_for(self, course_id: int) -> list[ClassSchedule]:
        return ClassSchedule.query.filter(
            ClassSchedule.course_id == course_id, ClassSchedule.is_active.is_(True),
        ).all()
