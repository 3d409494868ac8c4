"""Points Transaction Model - Rows of the append-only points ledger"""
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Index,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classquest.core.database import Base


class TransactionSource(str, Enum):
    ATTENDANCE = "ATTENDANCE"
    ADMIN_AWARD = "ADMIN_AWARD"
    PENALTY = "PENALTY"
    EVENT = "EVENT"


class PointsTransaction(Base):
    """
    A signed points movement for one student.

    The balance is never stored: it is the sum of `amount` over the
    student's rows.
    """
    __tablename__ = "points_transactions"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False)
    source = Column(SQLEnum(TransactionSource), nullable=False)

    # Logical link only: session deletion must not touch the ledger
    related_session_id = Column(Integer, nullable=True)

    awarded_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    student = relationship("User", foreign_keys=[student_id])

    __table_args__ = (
        Index(
            "ix_points_transactions_attendance_lookup",
            "student_id",
            "source",
            "related_session_id",
        ),
    )

    def __repr__(self):
        return (
            f"<PointsTransaction(id={self.id}, student_id={self.student_id}, "
            f"amount={self.amount}, source={self.source})>"
        )
