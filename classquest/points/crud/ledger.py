"""
Points Ledger CRUD - Append-only transaction log and derived balances

Balances are always computed with a single aggregate statement over the
ledger, so a reader never sees half of a multi-row unit.
"""
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, delete, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import db_operation
from classquest.core.exceptions import NotFoundError, ValidationError
from classquest.core.logging_utils import log_business_event
from classquest.points.models.transactions import PointsTransaction, TransactionSource
from classquest.users.crud.users import get_student_or_404


@db_operation
async def append_transaction(
    session: AsyncSession,
    student_id: int,
    amount: int,
    reason: str,
    source: TransactionSource,
    related_session_id: Optional[int] = None,
    awarded_by_id: Optional[int] = None,
    commit: bool = True,
) -> PointsTransaction:
    """
    Append a row to the ledger.

    The resulting balance may go below zero. With commit=False the row is
    only flushed so the caller can commit it together with other changes.
    """
    await get_student_or_404(session, student_id)

    transaction = PointsTransaction(
        student_id=student_id,
        amount=int(amount),
        reason=reason,
        source=source,
        related_session_id=related_session_id,
        awarded_by_id=awarded_by_id,
    )
    session.add(transaction)

    if commit:
        await session.commit()
        await session.refresh(transaction)
    else:
        await session.flush()

    return transaction


@db_operation
async def award_points(
    session: AsyncSession,
    student_id: int,
    amount: int,
    reason: Optional[str],
    awarded_by_id: Optional[int] = None,
) -> PointsTransaction:
    """Manual award (positive) or penalty (negative) by a manager"""
    if amount == 0:
        raise ValidationError("Amount must be non-zero", {"amount": amount})

    if amount > 0:
        source = TransactionSource.ADMIN_AWARD
        default_reason = "Points awarded"
    else:
        source = TransactionSource.PENALTY
        default_reason = "Points deducted"

    transaction = await append_transaction(
        session,
        student_id,
        amount,
        (reason or "").strip() or default_reason,
        source,
        awarded_by_id=awarded_by_id,
    )

    log_business_event(
        "points_awarded" if amount > 0 else "points_deducted",
        "points_transaction",
        transaction.id,
        {"student_id": student_id, "amount": amount, "awarded_by_id": awarded_by_id},
    )
    return transaction


@db_operation
async def get_balance(session: AsyncSession, student_id: int) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(PointsTransaction.amount), 0)).where(
            PointsTransaction.student_id == student_id
        )
    )
    return int(result.scalar() or 0)


@db_operation
async def get_balances(
    session: AsyncSession, student_ids: Iterable[int]
) -> Dict[int, int]:
    """Balance per student; students without transactions map to 0"""
    ids = list(dict.fromkeys(student_ids))
    balances = {student_id: 0 for student_id in ids}
    if not ids:
        return balances

    result = await session.execute(
        select(PointsTransaction.student_id, func.sum(PointsTransaction.amount))
        .where(PointsTransaction.student_id.in_(ids))
        .group_by(PointsTransaction.student_id)
    )
    for student_id, total in result.all():
        balances[student_id] = int(total or 0)
    return balances


def _positive_amount():
    return case((PointsTransaction.amount > 0, PointsTransaction.amount), else_=0)


@db_operation
async def get_experience(session: AsyncSession, student_id: int) -> int:
    """Experience only grows: the sum of positive ledger movements"""
    result = await session.execute(
        select(func.coalesce(func.sum(_positive_amount()), 0)).where(
            PointsTransaction.student_id == student_id
        )
    )
    return int(result.scalar() or 0)


@db_operation
async def get_experiences(
    session: AsyncSession, student_ids: Iterable[int]
) -> Dict[int, int]:
    ids = list(dict.fromkeys(student_ids))
    experience = {student_id: 0 for student_id in ids}
    if not ids:
        return experience

    result = await session.execute(
        select(PointsTransaction.student_id, func.sum(_positive_amount()))
        .where(PointsTransaction.student_id.in_(ids))
        .group_by(PointsTransaction.student_id)
    )
    for student_id, total in result.all():
        experience[student_id] = int(total or 0)
    return experience


@db_operation
async def reverse_attendance_award(
    session: AsyncSession,
    student_id: int,
    session_id: int,
    commit: bool = True,
) -> None:
    """
    Remove the attendance award granted for (student, session).

    Raises NotFoundError when no such award exists.
    """
    result = await session.execute(
        select(PointsTransaction.id)
        .where(
            and_(
                PointsTransaction.student_id == student_id,
                PointsTransaction.source == TransactionSource.ATTENDANCE,
                PointsTransaction.related_session_id == session_id,
            )
        )
        .order_by(PointsTransaction.id.desc())
        .limit(1)
    )
    transaction_id = result.scalar_one_or_none()

    if transaction_id is None:
        raise NotFoundError(
            "Attendance award", f"student={student_id}, session={session_id}"
        )

    deleted = await session.execute(
        delete(PointsTransaction).where(PointsTransaction.id == transaction_id)
    )
    if deleted.rowcount == 0:
        # Removed by a concurrent undo between the select and the delete
        raise NotFoundError(
            "Attendance award", f"student={student_id}, session={session_id}"
        )

    if commit:
        await session.commit()


@db_operation
async def list_transactions(
    session: AsyncSession,
    student_id: Optional[int] = None,
    source: Optional[TransactionSource] = None,
    student_ids: Optional[List[int]] = None,
    skip: int = 0,
    limit: int = 50,
) -> Tuple[List[PointsTransaction], int]:
    """Ledger rows, newest first"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 200:
        raise ValidationError("Limit must be between 1 and 200")

    base_query = select(PointsTransaction)

    if student_id is not None:
        base_query = base_query.where(PointsTransaction.student_id == student_id)
    if student_ids is not None:
        base_query = base_query.where(PointsTransaction.student_id.in_(student_ids))
    if source is not None:
        base_query = base_query.where(PointsTransaction.source == source)

    count_query = select(func.count()).select_from(base_query.subquery())
    total = (await session.execute(count_query)).scalar() or 0

    query = (
        base_query.order_by(PointsTransaction.id.desc()).offset(skip).limit(limit)
    )
    result = await session.execute(query)
    return list(result.scalars().all()), total
