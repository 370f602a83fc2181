"""
Idempotent seed-скрипт.
Запуск:
  python seed.py --reset   # дропнуть и пересоздать БД + демо-данные
  python seed.py           # мягкое наполнение недостающих данных (idempotent)
"""
from datetime import date, time, timedelta
import argparse

from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from models import (
    Attendance, AttendanceStatus, ClassSchedule, Course, Registration,
    RegistrationStatus, User, UserRole,
)

ACADEMIC_YEAR = "2025-2026"
SEMESTER = 1
DEPARTMENT = "ICT"
PASSWORD = "pass"

USERS = [
    ("registrar@example.com", UserRole.REGISTRAR, "Selam", "Tesfaye", None),
    ("head.ict@example.com", UserRole.DEPARTMENT_HEAD, "Dawit", "Bekele", None),
    ("abebe@example.com", UserRole.INSTRUCTOR, "Abebe", "Kebede", None),
    ("hana@example.com", UserRole.INSTRUCTOR, "Hana", "Girma", None),
    ("student1@example.com", UserRole.STUDENT, "Liya", "Alemu", "ICT/0001/25"),
    ("student2@example.com", UserRole.STUDENT, "Yonas", "Haile", "ICT/0002/25"),
    ("student3@example.com", UserRole.STUDENT, "Meron", "Tadesse", "ICT/0003/25"),
]

COURSES = [
    ("ICT101", "Introduction to Computing", 3),
    ("ICT102", "Computer Networks Fundamentals", 4),
]

# курс, преподаватель, день, начало, конец, аудитория
SLOTS = [
    ("ICT101", "abebe@example.com", "Monday", time(9, 0), time(10, 30), "B-101"),
    ("ICT101", "abebe@example.com", "Wednesday", time(9, 0), time(10, 30), "B-101"),
    ("ICT102", "hana@example.com", "Tuesday", time(13, 0), time(15, 0), "LAB-2"),
]

def get_or_create(model, defaults=None, **criteria):
    obj = model.query.filter_by(**criteria).first()
    if obj:
        return obj, False
    obj = model(**criteria, **(defaults or {}))
    db.session.add(obj)
    db.session.flush()
    return obj, True

def seed_users() -> dict[str, User]:
    out = {}
    for email, role, first, father, number in USERS:
        u, _ = get_or_create(User, email=email, defaults=dict(
            password_hash=generate_password_hash(PASSWORD), role=role.value,
            first_name=first, father_name=father, student_number=number,
            department=DEPARTMENT, is_active=True,
        ))
        out[email] = u
    return out

def seed_courses() -> dict[str, Course]:
    out = {}
    for code, name, credit in COURSES:
        c, _ = get_or_create(Course, code=code, department=DEPARTMENT, year=1, semester=SEMESTER,
                             defaults=dict(name=name, credit=credit, is_active=True))
        out[code] = c
    return out

def seed_registrations(users, courses) -> None:
    for u in users.values():
        if u.role != UserRole.STUDENT.value:
            continue
        reg, _ = get_or_create(Registration, student_id=u.id, academic_year=ACADEMIC_YEAR, semester=SEMESTER,
                               defaults=dict(department=DEPARTMENT, year=1, status=RegistrationStatus.CONFIRMED))
        for c in courses.values():
            if c not in reg.courses:
                reg.courses.append(c)

def seed_schedule(users, courses) -> list[ClassSchedule]:
    out = []
    for code, email, day, start, end, room in SLOTS:
        s, _ = get_or_create(
            ClassSchedule,
            course_id=courses[code].id, instructor_id=users[email].id,
            day_of_week=day, start_time=start, academic_year=ACADEMIC_YEAR, semester=SEMESTER,
            defaults=dict(end_time=end, room_number=room, department=DEPARTMENT, is_active=True),
        )
        out.append(s)
    return out

def seed_attendance(users, courses, slots) -> int:
    """Четыре прошедших понедельника по ICT101 с разной посещаемостью."""
    monday_slot = slots[0]
    students = [u for u in users.values() if u.role == UserRole.STUDENT.value]
    patterns = [
        [AttendanceStatus.PRESENT] * 4,
        [AttendanceStatus.PRESENT, AttendanceStatus.EXCUSED, AttendanceStatus.ABSENT, AttendanceStatus.PRESENT],
        [AttendanceStatus.ABSENT, AttendanceStatus.ABSENT, AttendanceStatus.PRESENT, AttendanceStatus.ABSENT],
    ]
    first_monday = date(2025, 9, 1)
    created = 0
    for st, pattern in zip(students, patterns):
        for week, status in enumerate(pattern):
            _, new = get_or_create(
                Attendance, student_id=st.id, course_id=courses["ICT101"].id,
                date=first_monday + timedelta(weeks=week),
                defaults=dict(status=status, instructor_id=monday_slot.instructor_id,
                              class_schedule_id=monday_slot.id, updated_by=monday_slot.instructor_id),
            )
            created += int(new)
    return created

def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        if args.reset:
            db.drop_all()
        db.create_all()
        users = seed_users()
        courses = seed_courses()
        seed_registrations(users, courses)
        slots = seed_schedule(users, courses)
        n = seed_attendance(users, courses, slots)
        db.session.commit()
        print(f"seed ok: users={len(users)} courses={len(courses)} slots={len(slots)} attendance+={n}")

if __name__ == "__main__":
    main()
