import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status, Request, Path
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import get_session
from classquest.core.limits import limiter
from classquest.core.dependencies import (
    get_current_user,
    require_manager,
    require_tutor_or_admin,
)
from classquest.core.exceptions import PermissionDeniedError
from classquest.users.crud.users import resolve_roster_tutor_id
from classquest.users.models.users import MANAGER_ROLES, User, UserRole
from classquest.attendance.models.sessions import AttendanceSession
from classquest.attendance.schemas.sessions import (
    AttendanceSessionCreate,
    AttendanceSessionUpdate,
    AttendanceSessionRead,
    AttendanceSessionDetail,
    AttendanceSessionListResponse,
    AttendanceRecordRead,
    QRCodeResponse,
    SessionTokenVerification,
)
from classquest.attendance.crud.sessions import (
    build_qr_payload,
    create_session,
    delete_session,
    get_session_by_id,
    get_session_by_token,
    is_expired,
    list_sessions,
    regenerate_qr_code,
    update_session,
)

router = APIRouter(prefix="/sessions", tags=["Attendance Sessions"])


def _session_detail(
    attendance_session: AttendanceSession, include_token: bool = True
) -> AttendanceSessionDetail:
    attendances = [
        AttendanceRecordRead.model_validate(record)
        for record in attendance_session.attendances
    ]
    detail = AttendanceSessionDetail(
        **AttendanceSessionRead.model_validate(attendance_session).model_dump(),
        is_expired=is_expired(attendance_session),
        qr_payload=build_qr_payload(attendance_session),
        attendance_count=len(attendances),
        attendances=attendances,
    )
    if not include_token:
        detail.qr_code_token = None
        detail.qr_payload = None
    return detail


def _ensure_session_owner(current_user: User, attendance_session: AttendanceSession) -> None:
    if (
        current_user.role == UserRole.TUTOR
        and attendance_session.created_by_id != current_user.id
    ):
        raise PermissionDeniedError(
            "modify", f"session {attendance_session.id}", "session belongs to another tutor"
        )


def _qr_response(attendance_session: AttendanceSession) -> QRCodeResponse:
    return QRCodeResponse(
        session_id=attendance_session.id,
        qr_code_token=attendance_session.qr_code_token,
        qr_code_expires_at=attendance_session.qr_code_expires_at,
        qr_payload=build_qr_payload(attendance_session),
    )


@router.post("/", response_model=AttendanceSessionDetail, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_attendance_session(
    request: Request,
    data: AttendanceSessionCreate,
    current_user: User = Depends(require_tutor_or_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a weekly attendance session.

    A QR token is generated and stays valid until Sunday 23:59:59.999 of the
    session's week.

    - **title**: Session title (required)
    - **description**: Optional description
    - **session_date**: When the session takes place
    """
    attendance_session = await create_session(db, data, current_user.id)
    attendance_session = await get_session_by_id(
        db, attendance_session.id, with_attendances=True
    )
    return _session_detail(attendance_session)


@router.get("/", response_model=AttendanceSessionListResponse)
@limiter.limit("30/minute")
async def get_sessions_list(
    request: Request,
    page: int = Query(1, ge=1, description="Page number starting from 1"),
    size: int = Query(20, ge=1, le=100, description="Number of items per page"),
    created_by_id: Optional[int] = Query(
        None, gt=0, description="Admins only: filter by creator"
    ),
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """
    Sessions visible to the caller, newest first.

    Tutors see their own sessions, assistants the sessions of the tutor they
    assist, admins every session.
    """
    if current_user.role == UserRole.ADMIN:
        creator_id = created_by_id
    else:
        creator_id = resolve_roster_tutor_id(current_user)
        if creator_id is None:
            return AttendanceSessionListResponse(
                sessions=[], total=0, page=page, size=size, pages=0
            )

    skip = (page - 1) * size
    sessions, total = await list_sessions(
        db, created_by_id=creator_id, skip=skip, limit=size
    )

    return AttendanceSessionListResponse(
        sessions=[AttendanceSessionRead.model_validate(row) for row in sessions],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total else 0,
    )


@router.get("/verify", response_model=SessionTokenVerification)
@limiter.limit("30/minute")
async def verify_session_token(
    request: Request,
    token: str = Query(..., min_length=1, max_length=64, description="Scanned QR token"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Resolve a scanned QR token so the student can confirm the check-in"""
    attendance_session = await get_session_by_token(db, token)

    return SessionTokenVerification(
        session_id=attendance_session.id,
        title=attendance_session.title,
        description=attendance_session.description,
        session_date=attendance_session.session_date,
        is_expired=is_expired(attendance_session),
    )


@router.get("/{session_id}", response_model=AttendanceSessionDetail)
@limiter.limit("60/minute")
async def get_attendance_session(
    request: Request,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Session with its attendances; the QR token is only shown to managers"""
    attendance_session = await get_session_by_id(db, session_id, with_attendances=True)
    return _session_detail(
        attendance_session, include_token=current_user.role in MANAGER_ROLES
    )


@router.patch("/{session_id}", response_model=AttendanceSessionDetail)
@limiter.limit("10/minute")
async def update_attendance_session(
    request: Request,
    data: AttendanceSessionUpdate,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(require_tutor_or_admin),
    db: AsyncSession = Depends(get_session),
):
    """Update title, description or date; the QR token is not re-issued"""
    _ensure_session_owner(current_user, await get_session_by_id(db, session_id))
    await update_session(db, session_id, data)
    attendance_session = await get_session_by_id(db, session_id, with_attendances=True)
    return _session_detail(attendance_session)


@router.post("/{session_id}/qr", response_model=QRCodeResponse)
@limiter.limit("10/minute")
async def regenerate_session_qr(
    request: Request,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(require_tutor_or_admin),
    db: AsyncSession = Depends(get_session),
):
    """Issue a new QR token; previously printed codes stop working"""
    _ensure_session_owner(current_user, await get_session_by_id(db, session_id))
    attendance_session = await regenerate_qr_code(db, session_id)
    return _qr_response(attendance_session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
async def delete_attendance_session(
    request: Request,
    session_id: int = Path(..., gt=0, description="Session ID"),
    current_user: User = Depends(require_tutor_or_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Delete a session and all of its attendance records.

    Points already awarded for the session are kept.
    """
    _ensure_session_owner(current_user, await get_session_by_id(db, session_id))
    await delete_session(db, session_id)
