from __future__ import annotations
from typing import Optional

from sqlalchemy import text

from extensions import db
from models import ClassSchedule
from .conflicts import SlotCandidate


class SqlSlotRepository:
    """Активные слоты из class_schedules для ConflictEngine."""

    def find_active(self, *, day_of_week: str, academic_year: str, semester: int,
                    instructor_id: Optional[int] = None, room_number: Optional[str] = None,
                    exclude_id: Optional[int] = None) -> list[ClassSchedule]:
        q = ClassSchedule.query.filter(
            ClassSchedule.day_of_week == day_of_week,
            ClassSchedule.academic_year == academic_year,
            ClassSchedule.semester == semester,
            ClassSchedule.is_active.is_(True),
        )
        if instructor_id is not None:
            q = q.filter(ClassSchedule.instructor_id == instructor_id)
        if room_number is not None:
            q = q.filter(ClassSchedule.room_number == room_number)
        if exclude_id is not None:
            q = q.filter(ClassSchedule.id != exclude_id)
        return q.order_by(ClassSchedule.start_time.asc()).all()


def lock_slot_resources(candidate: SlotCandidate) -> None:
    """На PostgreSQL сериализуем проверку+вставку по преподавателю и аудитории до конца транзакции."""
    if db.session.get_bind().dialect.name != "postgresql":
        return
    term = f"{candidate.academic_year}:{candidate.semester}:{candidate.slot.day_of_week}"
    # фиксированный порядок ключей, чтобы два запроса не взяли замки навстречу друг другу
    keys = sorted((f"instructor:{candidate.instructor_id}:{term}", f"room:{candidate.room_number}:{term}"))
    for key in keys:
        db.session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
