from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.config import ATTENDANCE_AWARD_POINTS
from classquest.core.database import get_session
from classquest.core.limits import limiter
from classquest.core.dependencies import get_current_user, require_manager
from classquest.core.exceptions import PermissionDeniedError, ValidationError
from classquest.users.crud.users import get_manager_roster
from classquest.users.models.users import User, UserRole
from classquest.points.crud.ledger import get_balance
from classquest.attendance.models.records import CheckInMethod
from classquest.attendance.schemas.sessions import AttendanceRecordRead
from classquest.attendance.schemas.checkins import (
    CheckInRequest,
    CheckInResponse,
    BulkCheckInRequest,
    BulkCheckInResponse,
    AttendeeStatusListResponse,
)
from classquest.attendance.crud.sessions import get_session_by_id
from classquest.attendance.crud.checkins import bulk_check_in, check_in, undo_check_in
from classquest.attendance.crud.reporting import list_attendees_with_status

router = APIRouter(prefix="/sessions", tags=["Check-ins"])


@router.post(
    "/{session_id}/checkins",
    response_model=CheckInResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
async def check_in_to_session(
    request: Request,
    data: CheckInRequest,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """
    Check a student in and award the attendance points.

    Students check themselves in by QR with the scanned token. Managers may
    check in students from their roster by QR or MANUAL; manual check-ins
    are accepted after the QR code has expired.

    - **student_id**: Student to check in (managers only)
    - **method**: QR or MANUAL
    - **token**: Token from the scanned QR code
    - **notes**: Optional note stored on the record
    """
    if current_user.role == UserRole.STUDENT:
        if data.student_id is not None and data.student_id != current_user.id:
            raise PermissionDeniedError(
                "check in", f"student {data.student_id}", "students can only check in themselves"
            )
        if data.method != CheckInMethod.QR:
            raise PermissionDeniedError(
                "check in", "session", "students can only check in with a QR code"
            )
        if not data.token:
            raise ValidationError("QR token is required")
        student_id = current_user.id
    else:
        if data.student_id is None:
            raise ValidationError("student_id is required")
        student_id = data.student_id

    record = await check_in(
        db,
        session_id,
        student_id,
        method=data.method,
        token=data.token,
        notes=data.notes,
        checked_in_by=current_user,
    )
    balance = await get_balance(db, student_id)

    return CheckInResponse(
        record=AttendanceRecordRead.model_validate(record),
        points_awarded=ATTENDANCE_AWARD_POINTS,
        balance=balance,
    )


@router.post("/{session_id}/checkins/bulk", response_model=BulkCheckInResponse)
@limiter.limit("10/minute")
async def bulk_check_in_to_session(
    request: Request,
    data: BulkCheckInRequest,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """
    Manually check in several students at once.

    Each student succeeds or fails on their own; the response lists both.
    """
    return await bulk_check_in(
        db, session_id, data.student_ids, checked_in_by=current_user
    )


@router.delete(
    "/{session_id}/checkins/{student_id}", status_code=status.HTTP_204_NO_CONTENT
)
@limiter.limit("30/minute")
async def undo_session_check_in(
    request: Request,
    session_id: int = Path(..., gt=0, description="Session ID"),
    student_id: int = Path(..., gt=0, description="Student ID"),
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """Remove the check-in and take back its attendance points"""
    await undo_check_in(db, session_id, student_id, undone_by=current_user)


@router.get("/{session_id}/attendees", response_model=AttendeeStatusListResponse)
@limiter.limit("60/minute")
async def get_session_attendees(
    request: Request,
    session_id: int = Path(..., gt=0, description="Session ID"),
    student_ids: Optional[List[int]] = Query(
        None, description="Roster to report on; defaults to the caller's students"
    ),
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """Roster joined with check-in status, for the mark-as-present screen"""
    await get_session_by_id(db, session_id)

    if student_ids is None:
        roster = [student.id for student in await get_manager_roster(db, current_user)]
    else:
        roster = student_ids

    attendees = await list_attendees_with_status(db, session_id, roster)

    return AttendeeStatusListResponse(
        session_id=session_id,
        attendees=attendees,
        checked_in_count=sum(1 for attendee in attendees if attendee.checked_in),
        total=len(attendees),
    )
