from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel, Field

STATUS = "^(present|absent|excused)$"

class AttendanceRecordIn(BaseModel):
    student_id: int
    status: str = Field(pattern=STATUS)
    notes: Optional[str] = Field(None, max_length=500)

class MarkAttendanceIn(BaseModel):
    course_id: int
    # YYYY-MM-DD или ISO-дата со временем; пусто -> сегодня по календарю колледжа
    date: Optional[str] = None
    records: List[AttendanceRecordIn] = Field(min_length=1)

class AttendanceUpdateIn(BaseModel):
    status: str = Field(pattern=STATUS)
    notes: Optional[str] = Field(None, max_length=500)
