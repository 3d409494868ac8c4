"""Attendance Session Model - A weekly attendance-taking window with a QR token"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classquest.core.database import Base


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    # no id reuse on SQLite after deletes
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    session_date = Column(DateTime(timezone=True), nullable=False, index=True)

    # QR check-in
    qr_code_token = Column(String(64), nullable=True, unique=True, index=True)
    qr_code_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    created_by = relationship("User")
    attendances = relationship(
        "AttendanceRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AttendanceRecord.check_in_time.desc()",
    )

    def __repr__(self):
        return f"<AttendanceSession(id={self.id}, title={self.title!r}, date={self.session_date})>"
