"""Points Schemas"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from classquest.points.models.transactions import TransactionSource


class PointsAwardRequest(BaseModel):
    """Positive amounts are awards, negative amounts penalties"""
    student_id: int = Field(..., gt=0)
    amount: int = Field(..., ge=-100000, le=100000, description="Signed, non-zero")
    reason: Optional[str] = Field(None, max_length=255)

    class Config:
        json_schema_extra = {
            "example": {"student_id": 42, "amount": -10, "reason": "Late homework"}
        }


class PointsTransactionRead(BaseModel):
    id: int
    student_id: int
    amount: int
    reason: str
    source: TransactionSource
    related_session_id: Optional[int] = None
    awarded_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PointsTransactionListResponse(BaseModel):
    transactions: List[PointsTransactionRead]
    total: int
    page: int
    size: int
    pages: int


class BalanceResponse(BaseModel):
    student_id: int
    balance: int
    experience: int
