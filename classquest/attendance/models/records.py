"""Attendance Record Model - One check-in of one student into one session"""
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classquest.core.database import Base


class CheckInMethod(str, Enum):
    QR = "QR"
    MANUAL = "MANUAL"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("attendance_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    check_in_time = Column(DateTime(timezone=True), nullable=False)
    check_in_method = Column(SQLEnum(CheckInMethod), nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    session = relationship("AttendanceSession", back_populates="attendances")
    student = relationship("User")

    # Enforced by the database so concurrent check-ins cannot both win
    __table_args__ = (
        UniqueConstraint(
            "session_id", "student_id", name="uq_attendance_records_session_student"
        ),
    )

    def __repr__(self):
        return (
            f"<AttendanceRecord(id={self.id}, session_id={self.session_id}, "
            f"student_id={self.student_id}, method={self.check_in_method})>"
        )
