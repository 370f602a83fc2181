from __future__ import annotations
from datetime import time
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from blueprints.auth import routes as auth_routes
from models import ClassSchedule, Course, Registration, RegistrationStatus, User, UserRole

ACADEMIC_YEAR = "2025-2026"
PASSWORD = "pass"

@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_routes._login_attempts.clear()
    yield
    auth_routes._login_attempts.clear()

@pytest.fixture()
def app():
    # контекст не держим открытым: у каждого запроса свой g и current_user
    app = create_app("test")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def login(app):
    """login("abebe@example.com") -> отдельный test_client с открытой сессией."""
    def _login(email: str, password: str = PASSWORD):
        c = app.test_client()
        r = c.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.get_json()
        return c
    return _login

def _user(email, role, first, father, department="ICT", number=None):
    u = User(
        email=email, password_hash=generate_password_hash(PASSWORD), role=role.value,
        first_name=first, father_name=father, department=department,
        student_number=number, is_active=True,
    )
    db.session.add(u)
    return u

@pytest.fixture()
def world(app):
    """Кафедра ICT: два преподавателя, три студента, курсы ICT101/ICT102 и EE201, слот ICT101 в понедельник 09:00-10:00."""
    with app.app_context():
        registrar = _user("registrar@example.com", UserRole.REGISTRAR, "Selam", "Tesfaye", department=None)
        head = _user("head@example.com", UserRole.DEPARTMENT_HEAD, "Dawit", "Bekele")
        abebe = _user("abebe@example.com", UserRole.INSTRUCTOR, "Abebe", "Kebede")
        hana = _user("hana@example.com", UserRole.INSTRUCTOR, "Hana", "Girma")
        liya = _user("liya@example.com", UserRole.STUDENT, "Liya", "Alemu", number="ICT/0001/25")
        yonas = _user("yonas@example.com", UserRole.STUDENT, "Yonas", "Haile", number="ICT/0002/25")
        meron = _user("meron@example.com", UserRole.STUDENT, "Meron", "Tadesse", number="ICT/0003/25")

        ict101 = Course(code="ICT101", name="Introduction to Computing", credit=3, department="ICT", year=1, semester=1)
        ict102 = Course(code="ICT102", name="Networks Fundamentals", credit=4, department="ICT", year=1, semester=1)
        ee201 = Course(code="EE201", name="Circuit Theory", credit=4, department="Electrical", year=2, semester=1)
        db.session.add_all([ict101, ict102, ee201])
        db.session.flush()

        for st in (liya, yonas):
            reg = Registration(student_id=st.id, department="ICT", year=1, semester=1,
                               academic_year=ACADEMIC_YEAR, status=RegistrationStatus.CONFIRMED)
            reg.courses.extend([ict101, ict102])
            db.session.add(reg)
        cancelled = Registration(student_id=meron.id, department="ICT", year=1, semester=1,
                                 academic_year=ACADEMIC_YEAR, status=RegistrationStatus.CANCELLED)
        cancelled.courses.append(ict101)
        db.session.add(cancelled)

        slot = ClassSchedule(
            course_id=ict101.id, instructor_id=abebe.id, academic_year=ACADEMIC_YEAR, semester=1,
            department="ICT", day_of_week="Monday", start_time=time(9, 0), end_time=time(10, 0),
            room_number="B-101", is_active=True,
        )
        db.session.add(slot)
        db.session.commit()

        return SimpleNamespace(
            registrar=registrar.id, head=head.id, abebe=abebe.id, hana=hana.id,
            liya=liya.id, yonas=yonas.id, meron=meron.id,
            ict101=ict101.id, ict102=ict102.id, ee201=ee201.id, slot=slot.id,
        )
