"""Attendance Session Schemas"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from classquest.attendance.models.records import CheckInMethod
from classquest.users.schemas.users import UserBrief


class AttendanceSessionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="Session title")
    description: Optional[str] = Field(None, max_length=2000)
    session_date: datetime = Field(..., description="When the session takes place")

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be blank")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Week 12 attendance",
                "description": "Thursday workshop",
                "session_date": "2026-10-15T18:00:00+03:00",
            }
        }


class AttendanceSessionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    session_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Title cannot be blank")
        return value


class AttendanceRecordRead(BaseModel):
    id: int
    session_id: int
    student_id: int
    check_in_time: datetime
    check_in_method: CheckInMethod
    notes: Optional[str] = None
    student: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class AttendanceSessionRead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    session_date: datetime
    qr_code_token: Optional[str] = None
    qr_code_expires_at: Optional[datetime] = None
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AttendanceSessionDetail(AttendanceSessionRead):
    """Session with its attendances, as served to the session page"""
    is_expired: bool = False
    qr_payload: Optional[str] = None
    attendance_count: int = 0
    attendances: List[AttendanceRecordRead] = []


class AttendanceSessionListResponse(BaseModel):
    sessions: List[AttendanceSessionRead]
    total: int
    page: int = 1
    size: int = 20
    pages: int = 1


class QRCodeResponse(BaseModel):
    session_id: int
    qr_code_token: str
    qr_code_expires_at: Optional[datetime] = None
    qr_payload: str


class SessionTokenVerification(BaseModel):
    """What a student sees after scanning, before confirming the check-in"""
    session_id: int
    title: str
    description: Optional[str] = None
    session_date: datetime
    is_expired: bool
