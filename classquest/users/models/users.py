"""User Model - Minimal directory of students and managers"""
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classquest.core.database import Base


class UserRole(str, Enum):
    """Roles resolved by the identity provider"""
    ADMIN = "ADMIN"
    TUTOR = "TUTOR"
    ASISTAN = "ASISTAN"  # assistant working for one tutor
    STUDENT = "STUDENT"


MANAGER_ROLES = frozenset({UserRole.ADMIN, UserRole.TUTOR, UserRole.ASISTAN})


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.STUDENT, index=True)

    # Student -> tutor the student is assigned to
    tutor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # Assistant -> tutor the assistant works for
    assisted_tutor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tutor = relationship("User", remote_side=[id], foreign_keys=[tutor_id])

    @property
    def display_name(self) -> str:
        full_name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full_name or self.username

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
