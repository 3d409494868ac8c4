"""
Check-in CRUD - Attendance records paired with their attendance award

A check-in writes the AttendanceRecord and its ATTENDANCE points transaction
in one commit; an undo deletes both in one commit. Duplicate check-ins are
stopped by the unique (session_id, student_id) constraint, so two concurrent
requests for the same pair end with exactly one winner.
"""
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.config import ATTENDANCE_AWARD_POINTS, ATTENDANCE_AWARD_REASON
from classquest.core.database import db_operation
from classquest.core.exceptions import (
    AlreadyCheckedInError,
    BaseAppException,
    NotCheckedInError,
    PermissionDeniedError,
    SessionExpiredError,
    ValidationError,
)
from classquest.core.logging_utils import get_logger, log_business_event
from classquest.core.timeutils import as_utc, utcnow
from classquest.attendance.crud.sessions import get_session_by_id, is_expired
from classquest.attendance.models.records import AttendanceRecord, CheckInMethod
from classquest.attendance.schemas.checkins import (
    BulkCheckInFailure,
    BulkCheckInResponse,
)
from classquest.points.crud.ledger import append_transaction, reverse_attendance_award
from classquest.points.models.transactions import TransactionSource
from classquest.users.crud.users import can_manage_student, get_student_or_404
from classquest.users.models.users import MANAGER_ROLES, User

logger = get_logger(__name__)


async def _find_record(
    session: AsyncSession, session_id: int, student_id: int
) -> Optional[AttendanceRecord]:
    result = await session.execute(
        select(AttendanceRecord).where(
            and_(
                AttendanceRecord.session_id == session_id,
                AttendanceRecord.student_id == student_id,
            )
        )
    )
    return result.scalar_one_or_none()


@db_operation
async def get_record(
    session: AsyncSession, session_id: int, student_id: int
) -> Optional[AttendanceRecord]:
    return await _find_record(session, session_id, student_id)


@db_operation
async def check_in(
    session: AsyncSession,
    session_id: int,
    student_id: int,
    method: CheckInMethod = CheckInMethod.QR,
    token: Optional[str] = None,
    notes: Optional[str] = None,
    checked_in_by: Optional[User] = None,
    now: Optional[datetime] = None,
) -> AttendanceRecord:
    """
    Check a student in and award the attendance points.

    QR check-ins are refused once the session's QR code has expired and,
    when a token is given, it must match the session's current token.
    Manual check-ins by a manager ignore expiry but are limited to the
    students that manager looks after.
    """
    attendance_session = await get_session_by_id(session, session_id)
    now = as_utc(now or utcnow())

    if method == CheckInMethod.QR:
        if not attendance_session.qr_code_token:
            raise ValidationError(
                "Session has no QR code", {"session_id": session_id}
            )
        if token is not None and token != attendance_session.qr_code_token:
            raise ValidationError(
                "QR token does not match this session", {"session_id": session_id}
            )
        if is_expired(attendance_session, now):
            raise SessionExpiredError(
                session_id, as_utc(attendance_session.qr_code_expires_at)
            )

    student = await get_student_or_404(session, student_id)

    manager = None
    if checked_in_by is not None and checked_in_by.role in MANAGER_ROLES:
        manager = checked_in_by
    if manager is not None and not can_manage_student(manager, student):
        raise PermissionDeniedError(
            "check in", f"student {student_id}", "student is not on your roster"
        )

    if await _find_record(session, session_id, student_id) is not None:
        raise AlreadyCheckedInError(session_id, student_id)

    record = AttendanceRecord(
        session_id=session_id,
        student_id=student_id,
        check_in_time=now,
        check_in_method=method,
        notes=notes,
    )

    try:
        session.add(record)
        await session.flush()
        await append_transaction(
            session,
            student_id,
            ATTENDANCE_AWARD_POINTS,
            ATTENDANCE_AWARD_REASON,
            TransactionSource.ATTENDANCE,
            related_session_id=session_id,
            awarded_by_id=manager.id if manager is not None else None,
            commit=False,
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        # Lost the race against a concurrent check-in for the same pair
        if await _find_record(session, session_id, student_id) is not None:
            raise AlreadyCheckedInError(session_id, student_id)
        raise
    except Exception:
        await session.rollback()
        raise

    await session.refresh(record)
    await session.refresh(record, attribute_names=["student"])

    log_business_event(
        "student_checked_in",
        "attendance_record",
        record.id,
        {
            "session_id": session_id,
            "student_id": student_id,
            "method": method.value,
            "points": ATTENDANCE_AWARD_POINTS,
        },
    )
    return record


@db_operation
async def undo_check_in(
    session: AsyncSession,
    session_id: int,
    student_id: int,
    undone_by: Optional[User] = None,
) -> None:
    """
    Remove the attendance record and its award together.

    A manager passed as undone_by may only undo check-ins of students on
    their roster, the same rule check_in applies.
    """
    await get_session_by_id(session, session_id)

    if undone_by is not None and undone_by.role in MANAGER_ROLES:
        student = await get_student_or_404(session, student_id)
        if not can_manage_student(undone_by, student):
            raise PermissionDeniedError(
                "undo check-in of", f"student {student_id}", "student is not on your roster"
            )

    try:
        deleted = await session.execute(
            delete(AttendanceRecord).where(
                and_(
                    AttendanceRecord.session_id == session_id,
                    AttendanceRecord.student_id == student_id,
                )
            )
        )
        if deleted.rowcount == 0:
            raise NotCheckedInError(session_id, student_id)

        await reverse_attendance_award(session, student_id, session_id, commit=False)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    log_business_event(
        "student_check_in_undone",
        "attendance_session",
        session_id,
        {"student_id": student_id, "points": -ATTENDANCE_AWARD_POINTS},
    )


@db_operation
async def bulk_check_in(
    session: AsyncSession,
    session_id: int,
    student_ids: Iterable[int],
    checked_in_by: Optional[User] = None,
) -> BulkCheckInResponse:
    """
    Manually check in many students, each in its own transaction.

    One student's failure does not stop the rest; failures are reported
    next to the successes. A missing session fails the whole call.
    """
    await get_session_by_id(session, session_id)

    response = BulkCheckInResponse()
    for student_id in dict.fromkeys(student_ids):
        try:
            await check_in(
                session,
                session_id,
                student_id,
                method=CheckInMethod.MANUAL,
                checked_in_by=checked_in_by,
            )
        except BaseAppException as e:
            response.failed.append(
                BulkCheckInFailure(
                    student_id=student_id, error=e.error_code, message=e.message
                )
            )
            # A rolled back check-in expires everything loaded in the session
            if checked_in_by is not None and checked_in_by in session:
                await session.refresh(checked_in_by)
            continue

        response.succeeded.append(student_id)
        response.points_awarded += ATTENDANCE_AWARD_POINTS

    logger.info(
        f"Bulk check-in for session {session_id}: "
        f"{len(response.succeeded)} succeeded, {len(response.failed)} failed",
        extra={"session_id": session_id},
    )
    return response
