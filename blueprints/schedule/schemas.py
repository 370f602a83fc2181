from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field, field_validator

HHMM = r"^([01]\d|2[0-3]):([0-5]\d)$"
DEPARTMENT = "^(Freshman|Electrical|Manufacturing|Automotive|Construction|ICT)$"
ACADEMIC_YEAR = r"^\d{4}-\d{4}$"

def _strip_room(v):
    return v.strip() if isinstance(v, str) else v

# ---------- Slots ----------
class ScheduleIn(BaseModel):
    course_id: int
    instructor_id: int
    academic_year: str = Field(pattern=ACADEMIC_YEAR)
    semester: int = Field(ge=1, le=2)
    department: str = Field(pattern=DEPARTMENT)
    day_of_week: str = Field(min_length=1, max_length=10)
    # end > start проверяет TimeSlot, чтобы причина отказа была одной и той же
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)
    room_number: str = Field(min_length=1, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("room_number", mode="before")
    @classmethod
    def strip_room(cls, v):
        return _strip_room(v)

class ScheduleUpdate(BaseModel):
    instructor_id: Optional[int] = None
    day_of_week: Optional[str] = Field(None, min_length=1, max_length=10)
    start_time: Optional[str] = Field(None, pattern=HHMM)
    end_time: Optional[str] = Field(None, pattern=HHMM)
    room_number: Optional[str] = Field(None, min_length=1, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def strip_room(cls, v):
        return _strip_room(v)

class ConflictCheckIn(BaseModel):
    instructor_id: int
    room_number: str = Field(min_length=1, max_length=20)
    day_of_week: str = Field(min_length=1, max_length=10)
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)
    academic_year: str = Field(pattern=ACADEMIC_YEAR)
    semester: int = Field(ge=1, le=2)
    exclude_id: Optional[int] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def strip_room(cls, v):
        return _strip_room(v)

# ---------- Availability queries ----------
class AvailabilityQuery(BaseModel):
    day_of_week: str = Field(min_length=1, max_length=10)
    start_time: str = Field(pattern=HHMM)
    end_time: str = Field(pattern=HHMM)
    academic_year: Optional[str] = Field(None, pattern=ACADEMIC_YEAR)
    semester: Optional[int] = Field(None, ge=1, le=2)
    department: Optional[str] = Field(None, pattern=DEPARTMENT)
