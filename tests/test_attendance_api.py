from __future__ import annotations
from datetime import date, time, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import Attendance, AttendanceStatus, AuditLog, ClassSchedule, Notification
from blueprints.core.clock import institution_today
from blueprints.attendance import services as svc

P, A, E = AttendanceStatus.PRESENT, AttendanceStatus.ABSENT, AttendanceStatus.EXCUSED
FIRST_MONDAY = date(2025, 9, 1)
TERM = "academic_year=2025-2026&semester=1"

def _seed(app, w, student_id, statuses, course_id=None, start=FIRST_MONDAY):
    """Отметки по понедельникам подряд, начиная со start."""
    with app.app_context():
        ids = []
        for i, st in enumerate(statuses):
            row = Attendance(
                student_id=student_id, course_id=course_id or w.ict101, instructor_id=w.abebe,
                class_schedule_id=w.slot, date=start + timedelta(weeks=i), status=st,
            )
            db.session.add(row)
            db.session.flush()
            ids.append(row.id)
        db.session.commit()
        return ids

def _mark(c, w, records, day="2025-09-01", course_id=None):
    return c.post("/api/v1/attendance/mark", json={
        "course_id": course_id or w.ict101, "date": day,
        "records": [{"student_id": sid, "status": st} for sid, st in records],
    })

@pytest.fixture()
def abebe(world, login):
    return login("abebe@example.com")

@pytest.fixture()
def head(world, login):
    return login("head@example.com")

# ---------- отметка ----------
def test_mark_attendance_creates_records(app, world, abebe):
    r = _mark(abebe, world, [(world.liya, "present"), (world.yonas, "absent")])
    assert r.status_code == 201, r.get_json()
    js = r.get_json()
    assert js["date"] == "2025-09-01"
    assert js["day_of_week"] == "Monday"
    assert js["schedule"]["id"] == world.slot
    assert js["summary"] == {
        "total": 2, "created": 2, "updated": 0,
        "present": 1, "absent": 1, "excused": 0, "warnings_sent": 0,
    }
    with app.app_context():
        rows = Attendance.query.order_by(Attendance.student_id).all()
        assert [(r.student_id, r.status) for r in rows] == [(world.liya, P), (world.yonas, A)]
        assert all(r.class_schedule_id == world.slot for r in rows)
        note = Notification.query.filter_by(recipient_id=world.yonas).one()
        assert note.type == "attendance"
        assert "ICT101" in note.message
        assert AuditLog.query.filter_by(action="ATTENDANCE_MARKED").count() == 1

def test_mark_twice_updates_instead_of_duplicating(app, world, abebe):
    _mark(abebe, world, [(world.liya, "present"), (world.yonas, "present")])
    r = _mark(abebe, world, [(world.liya, "excused"), (world.yonas, "present")])
    assert r.status_code == 201
    js = r.get_json()
    assert (js["summary"]["created"], js["summary"]["updated"]) == (0, 2)
    assert all(rec["updated"] for rec in js["records"])
    with app.app_context():
        assert Attendance.query.count() == 2
        assert Attendance.query.filter_by(student_id=world.liya).one().status == E

def test_mark_on_unscheduled_weekday_is_403(world, abebe):
    r = _mark(abebe, world, [(world.liya, "present")], day="2025-09-02")
    assert r.status_code == 403
    assert r.get_json()["error"] == "You are not scheduled to teach this course on Tuesday"

def test_mark_by_unassigned_instructor_is_403(world, login):
    r = _mark(login("hana@example.com"), world, [(world.liya, "present")])
    assert r.status_code == 403

def test_mark_future_date_is_400(world, abebe):
    r = _mark(abebe, world, [(world.liya, "present")], day="2099-01-05")
    assert r.status_code == 400
    assert r.get_json()["error"] == "Cannot mark attendance for future dates"

def test_mark_invalid_date_is_400(world, abebe):
    r = _mark(abebe, world, [(world.liya, "present")], day="01/09/2025")
    assert r.status_code == 400
    assert r.get_json()["error"] == "Invalid date"

def test_mark_student_with_cancelled_registration_is_400(app, world, abebe):
    r = _mark(abebe, world, [(world.liya, "present"), (world.meron, "present")])
    assert r.status_code == 400
    js = r.get_json()
    assert js["error"] == "Some students are not registered for this course"
    assert js["details"]["student_ids"] == [world.meron]
    with app.app_context():
        assert Attendance.query.count() == 0

def test_mark_course_without_roster_is_404(app, world, abebe):
    with app.app_context():
        db.session.add(ClassSchedule(
            course_id=world.ee201, instructor_id=world.abebe, academic_year="2025-2026", semester=1,
            department="Electrical", day_of_week="Monday", start_time=time(11, 0), end_time=time(12, 0),
            room_number="E-1", is_active=True,
        ))
        db.session.commit()
    r = _mark(abebe, world, [(world.liya, "present")], course_id=world.ee201)
    assert r.status_code == 404
    assert r.get_json()["error"] == "No students registered for this course"

def test_mark_requires_records_and_valid_status(world, abebe):
    r = abebe.post("/api/v1/attendance/mark", json={"course_id": world.ict101, "date": "2025-09-01", "records": []})
    assert r.status_code == 400
    r = _mark(abebe, world, [(world.liya, "late")])
    assert r.status_code == 400
    assert r.get_json()["error"] == "validation_error"

def test_only_instructors_mark(world, head):
    assert _mark(head, world, [(world.liya, "present")]).status_code == 403

def test_low_attendance_warning_in_band(app, world, abebe):
    # два присутствия до 1 сентября, затем пропуск: 2/3 = 66.7%
    _seed(app, world, world.liya, [P, P], start=FIRST_MONDAY - timedelta(weeks=2))
    r = _mark(abebe, world, [(world.liya, "absent"), (world.yonas, "absent")])
    assert r.get_json()["summary"]["warnings_sent"] == 1
    with app.app_context():
        warnings = Notification.query.filter_by(type="warning").all()
        assert [n.recipient_id for n in warnings] == [world.liya]
        assert "66.7%" in warnings[0].message

# ---------- часовой пояс ----------
def test_session_weekday_uses_institution_timezone(app, world, abebe):
    # 22:30 UTC понедельника - это уже вторник 01:30 в Аддис-Абебе
    r = _mark(abebe, world, [(world.liya, "present")], day="2025-09-01T22:30:00Z")
    assert r.status_code == 403
    r = _mark(abebe, world, [(world.liya, "present")], day="2025-09-01T20:00:00Z")
    assert r.status_code == 201
    assert r.get_json()["date"] == "2025-09-01"

# ---------- правка ----------
def test_head_updates_any_record(app, world, head):
    (aid,) = _seed(app, world, world.liya, [P])
    r = head.put(f"/api/v1/attendance/{aid}", json={"status": "absent", "notes": "left early"})
    assert r.status_code == 200
    rec = r.get_json()["record"]
    assert (rec["status"], rec["notes"]) == ("absent", "left early")
    with app.app_context():
        assert db.session.get(Attendance, aid).updated_by == world.head
        assert AuditLog.query.filter_by(action="ATTENDANCE_UPDATED").one().payload == {"from": "present", "to": "absent"}
        assert Notification.query.filter_by(recipient_id=world.liya, type="attendance").count() == 1

def test_instructor_updates_only_same_day(app, world, abebe):
    (old_id,) = _seed(app, world, world.liya, [P])
    with app.app_context():
        today = institution_today()
    (today_id,) = _seed(app, world, world.yonas, [P], start=today)
    assert abebe.put(f"/api/v1/attendance/{old_id}", json={"status": "absent"}).status_code == 403
    r = abebe.put(f"/api/v1/attendance/{today_id}", json={"status": "excused"})
    assert r.status_code == 200
    assert r.get_json()["record"]["status"] == "excused"

def test_other_instructor_and_students_cannot_update(app, world, login):
    with app.app_context():
        today = institution_today()
    (aid,) = _seed(app, world, world.liya, [P], start=today)
    assert login("hana@example.com").put(f"/api/v1/attendance/{aid}", json={"status": "absent"}).status_code == 403
    assert login("liya@example.com").put(f"/api/v1/attendance/{aid}", json={"status": "absent"}).status_code == 403

def test_update_unknown_record_is_404(world, head):
    assert head.put("/api/v1/attendance/9999", json={"status": "absent"}).status_code == 404

# ---------- допуск ----------
def test_eligibility_seventy_percent(app, world, head):
    _seed(app, world, world.liya, [P] * 6 + [E] + [A] * 3)
    r = head.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}")
    assert r.status_code == 200
    e = r.get_json()["eligibility"]
    assert e["percentage"] == 70.0
    assert (e["present"], e["excused"], e["absent"], e["total_classes"]) == (6, 1, 3, 10)
    assert e["eligible"] is False
    assert e["deficit"] == 5.0
    assert e["required_percentage"] == 75.0
    assert e["has_data"] is True

def test_eligibility_threshold_override(app, world, head):
    _seed(app, world, world.liya, [P] * 6 + [E] + [A] * 3)
    e = head.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}?threshold=70").get_json()["eligibility"]
    assert e["eligible"] is True and e["deficit"] == 0
    assert head.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}?threshold=abc").status_code == 400
    assert head.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}?threshold=120").status_code == 400

def test_eligibility_without_records(world, head):
    e = head.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.yonas}").get_json()["eligibility"]
    assert e["percentage"] == 0
    assert e["eligible"] is False
    assert e["has_data"] is False

def test_eligibility_access_rules(world, login):
    liya = login("liya@example.com")
    assert liya.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}").status_code == 200
    assert liya.get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.yonas}").status_code == 403
    assert login("hana@example.com").get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}").status_code == 403
    assert login("abebe@example.com").get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.liya}").status_code == 200

    r = login("head@example.com").get(f"/api/v1/attendance/eligibility/{world.ict101}/{world.meron}")
    assert r.status_code == 404
    assert r.get_json()["error"] == "Student is not registered for this course"

# ---------- студент ----------
def test_student_course_attendance(app, world, login):
    _seed(app, world, world.liya, [P, A, P, P])
    liya = login("liya@example.com")
    js = liya.get(f"/api/v1/attendance/student/{world.ict101}").get_json()
    assert js["stats"] == {"total_classes": 4, "present": 3, "absent": 1, "excused": 0, "percentage": 75.0}
    assert js["eligibility"]["eligible"] is True
    dates = [r["date"] for r in js["records"]]
    assert dates == sorted(dates, reverse=True)
    assert [s["id"] for s in js["schedules"]] == [world.slot]
    assert liya.get(f"/api/v1/attendance/student/{world.ee201}").status_code == 403

def test_student_all_courses(app, world, login):
    _seed(app, world, world.liya, [P] * 6 + [E] + [A] * 3)
    js = login("liya@example.com").get("/api/v1/attendance/student/all").get_json()
    assert [c["course"]["code"] for c in js["courses"]] == ["ICT101", "ICT102"]
    assert js["total_courses"] == 2
    assert js["overall_attendance"] == 35.0
    assert js["at_risk_courses"] == 2

# ---------- отчёты ----------
def test_course_report_with_daily_sheet(app, world, abebe):
    _mark(abebe, world, [(world.liya, "present")])
    js = abebe.get(f"/api/v1/attendance/report/{world.ict101}?date=2025-09-01").get_json()
    s = js["summary"]
    assert s["student_count"] == 2
    assert s["total_classes"] == 1
    assert s["session_dates"] == ["2025-09-01"]
    assert s["average_attendance"] == 50.0
    daily = {r["student"]["id"]: r["status"] for r in js["daily"]["records"]}
    assert daily == {world.liya: "present", world.yonas: "not_marked"}
    assert js["daily"]["day_of_week"] == "Monday"

def test_course_report_access(world, login):
    assert login("hana@example.com").get(f"/api/v1/attendance/report/{world.ict101}").status_code == 403
    head = login("head@example.com")
    assert head.get(f"/api/v1/attendance/report/{world.ict101}").status_code == 200
    r = head.get(f"/api/v1/attendance/report/{world.ee201}")
    assert r.status_code == 404
    assert head.get("/api/v1/attendance/report/9999").status_code == 404

def test_department_overview(app, world, head):
    _seed(app, world, world.liya, [P, P, P, P])
    _seed(app, world, world.yonas, [P, A, A, A])
    js = head.get("/api/v1/attendance/department/overview").get_json()
    assert js["department"] == "ICT"
    by_code = {c["course"]["code"]: c for c in js["courses"]}
    assert set(by_code) == {"ICT101", "ICT102"}
    ict101 = by_code["ICT101"]
    assert ict101["bulk_attendance_rate"] == 62.5
    assert (ict101["present_count"], ict101["absent_count"], ict101["excused_count"]) == (5, 3, 0)
    assert ict101["class_sessions"] == 4
    assert ict101["student_count"] == 2
    assert ict101["at_risk_student_count"] == 1
    assert len(ict101["schedules"]) == 1
    # ICT102 без занятий: 0% и никого в зоне риска
    assert by_code["ICT102"]["bulk_attendance_rate"] == 0
    assert by_code["ICT102"]["at_risk_student_count"] == 0
    # число студентов берётся из списка курса, а не из отметок
    assert by_code["ICT102"]["student_count"] == 2
    assert js["summary"] == {
        "total_courses": 2, "total_schedules": 1,
        "average_attendance": 31.3, "total_at_risk_students": 1,
    }

def test_department_overview_unknown_department(world, login):
    registrar = login("registrar@example.com")
    r = registrar.get("/api/v1/attendance/department/overview?department=Automotive")
    assert r.status_code == 404
    assert r.get_json()["error"] == "No courses found for this department"
    assert registrar.get("/api/v1/attendance/department/overview").status_code == 400
    assert login("abebe@example.com").get("/api/v1/attendance/department/overview").status_code == 403

def test_at_risk_lists_each_student_course_pair(app, world, head):
    _seed(app, world, world.liya, [P, P, P, P])
    _seed(app, world, world.yonas, [P, A, A, A])
    js = head.get("/api/v1/attendance/at-risk").get_json()
    pairs = sorted((s["student"]["id"], s["course"]["code"]) for s in js["students"])
    # ICT102 без отметок: оба студента на 0%
    assert pairs == sorted([(world.yonas, "ICT101"), (world.liya, "ICT102"), (world.yonas, "ICT102")])
    assert js["summary"]["total_at_risk"] == 3
    assert js["summary"]["unique_students"] == 2
    assert js["summary"]["by_course"] == {"ICT101": 1, "ICT102": 2}
    assert js["threshold"] == 75.0

# ---------- преподаватель ----------
def test_instructor_courses(world, abebe, login):
    js = abebe.get(f"/api/v1/attendance/instructor/courses?{TERM}").get_json()
    assert js["count"] == 1
    item = js["courses"][0]
    assert item["course"]["code"] == "ICT101"
    assert item["student_count"] == 2
    assert [s["day_of_week"] for s in item["schedules"]] == ["Monday"]
    assert login("hana@example.com").get(f"/api/v1/attendance/instructor/courses?{TERM}").get_json()["count"] == 0

def test_instructor_courses_bad_semester_is_400(world, abebe):
    for raw in ("x", "3"):
        r = abebe.get(f"/api/v1/attendance/instructor/courses?semester={raw}")
        assert r.status_code == 400
        assert r.get_json()["details"] == {"semester": raw}

def test_students_for_marking(app, world, abebe, login):
    _mark(abebe, world, [(world.yonas, "absent")])
    js = abebe.get(f"/api/v1/attendance/students/{world.ict101}?date=2025-09-01").get_json()
    assert js["day_of_week"] == "Monday"
    statuses = {s["student"]["id"]: s["status"] for s in js["students"]}
    assert statuses == {world.liya: "not_marked", world.yonas: "absent"}
    assert login("hana@example.com").get(f"/api/v1/attendance/students/{world.ict101}").status_code == 403

# ---------- ограничения БД ----------
def test_database_rejects_duplicate_attendance(app, world):
    _seed(app, world, world.liya, [P])
    with app.app_context():
        db.session.add(Attendance(
            student_id=world.liya, course_id=world.ict101, instructor_id=world.abebe,
            class_schedule_id=world.slot, date=FIRST_MONDAY, status=A,
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
        assert Attendance.query.count() == 1

def test_upsert_falls_back_to_update_when_row_appears(app, world, monkeypatch):
    _seed(app, world, world.liya, [A])
    real_find = svc._find_record
    calls = []

    def find_after_race(*args):
        # первый поиск «не видит» запись, вставленную параллельным запросом
        calls.append(args)
        return None if len(calls) == 1 else real_find(*args)

    monkeypatch.setattr(svc, "_find_record", find_after_race)
    with app.app_context():
        row, created = svc._upsert(world.liya, world.ict101, FIRST_MONDAY, P, "late", world.abebe, world.slot)
        db.session.commit()
        assert created is False
        assert len(calls) == 2
        rows = Attendance.query.filter_by(student_id=world.liya, course_id=world.ict101).all()
        assert len(rows) == 1
        assert rows[0].id == row.id
        assert AttendanceStatus(rows[0].status) is P
        assert rows[0].notes == "late"
