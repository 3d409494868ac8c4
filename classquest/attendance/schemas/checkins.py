"""Check-in Schemas"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from classquest.attendance.models.records import CheckInMethod
from classquest.attendance.schemas.sessions import AttendanceRecordRead


class CheckInRequest(BaseModel):
    """
    Check a student in to a session.

    Students omit student_id (they can only check themselves in with QR);
    managers pass the student they are marking present.
    """
    student_id: Optional[int] = Field(None, gt=0)
    method: CheckInMethod = CheckInMethod.QR
    token: Optional[str] = Field(None, max_length=64, description="QR token from the scanned URL")
    notes: Optional[str] = Field(None, max_length=1000)

    class Config:
        json_schema_extra = {
            "example": {"student_id": 42, "method": "MANUAL", "notes": "Arrived late"}
        }


class CheckInResponse(BaseModel):
    record: AttendanceRecordRead
    points_awarded: int
    balance: int


class BulkCheckInRequest(BaseModel):
    student_ids: List[int] = Field(..., min_length=1, max_length=500)

    @field_validator("student_ids")
    @classmethod
    def positive_ids(cls, value: List[int]) -> List[int]:
        if any(student_id <= 0 for student_id in value):
            raise ValueError("Student IDs must be positive")
        return value


class BulkCheckInFailure(BaseModel):
    student_id: int
    error: str
    message: str


class BulkCheckInResponse(BaseModel):
    succeeded: List[int] = []
    failed: List[BulkCheckInFailure] = []
    points_awarded: int = 0


class AttendeeStatus(BaseModel):
    """One roster entry joined against the session's attendance"""
    student_id: int
    checked_in: bool
    check_in_time: Optional[datetime] = None
    method: Optional[CheckInMethod] = None


class AttendeeStatusListResponse(BaseModel):
    session_id: int
    attendees: List[AttendeeStatus]
    checked_in_count: int
    total: int
