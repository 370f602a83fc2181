"""Календарь колледжа: «сегодня», день недели занятия и текущий семестр.

Все вычисления идут в часовом поясе INSTITUTION_TZ, иначе занятие около
полуночи попадает не в тот день недели.
"""
from __future__ import annotations
from datetime import date, datetime
from zoneinfo import ZoneInfo

from flask import current_app, request

from .errors import ValidationError

DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

def institution_tz() -> ZoneInfo:
    return ZoneInfo(current_app.config.get("INSTITUTION_TZ", "UTC"))

def institution_today() -> date:
    return datetime.now(institution_tz()).date()

def weekday_name(d: date) -> str:
    return DAYS[d.weekday()]

def parse_session_date(raw: str | None, tz: ZoneInfo) -> date:
    """'YYYY-MM-DD' берём как есть; дату со временем и зоной переводим в tz."""
    if raw is None or raw == "":
        return datetime.now(tz).date()
    try:
        if len(raw) == 10:
            return date.fromisoformat(raw)
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid date", details={"date": raw})
    if dt.tzinfo is not None:
        dt = dt.astimezone(tz)
    return dt.date()

def current_term(today: date, split_month: int = 7) -> tuple[str, int]:
    academic_year = f"{today.year}-{today.year + 1}"
    semester = 1 if today.month < split_month else 2
    return academic_year, semester

def requested_term() -> tuple[str, int]:
    """academic_year/semester из query, иначе текущий семестр по календарю колледжа."""
    default_year, default_sem = current_term(
        institution_today(), current_app.config.get("SEMESTER_SPLIT_MONTH", 7)
    )
    year = request.args.get("academic_year") or default_year
    raw_sem = request.args.get("semester")
    if raw_sem is None:
        return year, default_sem
    if raw_sem not in ("1", "2"):
        raise ValidationError("semester must be 1 or 2", details={"semester": raw_sem})
    return year, int(raw_sem)
