import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import get_session
from classquest.core.limits import limiter
from classquest.core.dependencies import get_current_user, require_manager
from classquest.core.exceptions import PermissionDeniedError, ValidationError
from classquest.users.crud.users import can_manage_student, get_student_or_404
from classquest.users.models.users import User, UserRole
from classquest.points.models.transactions import TransactionSource
from classquest.points.schemas.points import (
    PointsAwardRequest,
    PointsTransactionRead,
    PointsTransactionListResponse,
    BalanceResponse,
)
from classquest.points.crud.ledger import (
    award_points,
    get_balance,
    get_experience,
    list_transactions,
)

router = APIRouter(prefix="/points", tags=["Points"])


async def _ensure_can_view(db: AsyncSession, current_user: User, student_id: int) -> None:
    """Students see only themselves, managers their own roster"""
    if current_user.role == UserRole.STUDENT:
        if student_id != current_user.id:
            raise PermissionDeniedError("view points of", f"student {student_id}")
        return

    student = await get_student_or_404(db, student_id)
    if not can_manage_student(current_user, student):
        raise PermissionDeniedError(
            "view points of", f"student {student_id}", "student is not on your roster"
        )


@router.get("/balance/{student_id}", response_model=BalanceResponse)
@limiter.limit("60/minute")
async def get_student_balance(
    request: Request,
    student_id: int = Path(..., gt=0, description="Student ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Current balance (sum of the ledger) and experience (sum of awards)"""
    await _ensure_can_view(db, current_user, student_id)
    await get_student_or_404(db, student_id)

    return BalanceResponse(
        student_id=student_id,
        balance=await get_balance(db, student_id),
        experience=await get_experience(db, student_id),
    )


@router.get("/transactions", response_model=PointsTransactionListResponse)
@limiter.limit("30/minute")
async def get_transactions_list(
    request: Request,
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    size: int = Query(50, ge=1, le=200, description="Number of items per page"),
    student_id: Optional[int] = Query(None, gt=0, description="Filter by student"),
    source: Optional[TransactionSource] = Query(None, description="Filter by source"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Ledger rows, newest first.

    Students always get their own rows; managers must name a student.
    """
    if current_user.role == UserRole.STUDENT:
        student_id = student_id or current_user.id
    elif student_id is None:
        raise ValidationError("student_id is required")

    await _ensure_can_view(db, current_user, student_id)

    skip = (page - 1) * size
    transactions, total = await list_transactions(
        db, student_id=student_id, source=source, skip=skip, limit=size
    )

    return PointsTransactionListResponse(
        transactions=[PointsTransactionRead.model_validate(row) for row in transactions],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total else 0,
    )


@router.post("/", response_model=PointsTransactionRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def award_student_points(
    request: Request,
    data: PointsAwardRequest,
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """
    Award or deduct points by hand.

    - **student_id**: Student receiving the points
    - **amount**: Positive to award, negative for a penalty; zero is rejected
    - **reason**: Optional reason shown in the student's history
    """
    student = await get_student_or_404(db, data.student_id)
    if not can_manage_student(current_user, student):
        raise PermissionDeniedError(
            "award points to", f"student {data.student_id}", "student is not on your roster"
        )

    return await award_points(
        db, data.student_id, data.amount, data.reason, awarded_by_id=current_user.id
    )
