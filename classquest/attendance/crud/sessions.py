"""Attendance Session CRUD - Session lifecycle and QR token issuance"""
import secrets
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from classquest.core.config import QR_CHECKIN_BASE_URL
from classquest.core.database import db_operation, with_db_transaction
from classquest.core.exceptions import NotFoundError, ValidationError
from classquest.core.logging_utils import log_business_event
from classquest.core.timeutils import as_utc, end_of_week, utcnow
from classquest.attendance.models.sessions import AttendanceSession
from classquest.attendance.models.records import AttendanceRecord
from classquest.attendance.schemas.sessions import (
    AttendanceSessionCreate,
    AttendanceSessionUpdate,
)

QR_TOKEN_BYTES = 32


def generate_qr_token() -> str:
    """64 hex characters of CSPRNG output"""
    return secrets.token_hex(QR_TOKEN_BYTES)


def is_expired(attendance_session: AttendanceSession, now: Optional[datetime] = None) -> bool:
    """A session expires only if it has an expiry and `now` is past it"""
    expires_at = as_utc(attendance_session.qr_code_expires_at)
    if expires_at is None:
        return False
    return as_utc(now or utcnow()) > expires_at


def build_qr_payload(attendance_session: AttendanceSession) -> Optional[str]:
    """URL encoded into the QR code; the student's client opens it and checks in"""
    if not attendance_session.qr_code_token:
        return None
    base_url = QR_CHECKIN_BASE_URL.rstrip("/")
    return (
        f"{base_url}/attendance/{attendance_session.id}/check-in"
        f"?token={attendance_session.qr_code_token}"
    )


@db_operation
async def get_session_by_id(
    session: AsyncSession, session_id: int, with_attendances: bool = False
) -> AttendanceSession:
    if session_id is None or session_id <= 0:
        raise ValidationError("Session ID must be positive")

    query = select(AttendanceSession).where(AttendanceSession.id == session_id)
    if with_attendances:
        query = query.options(
            selectinload(AttendanceSession.attendances).selectinload(
                AttendanceRecord.student
            )
        )

    result = await session.execute(query)
    attendance_session = result.scalar_one_or_none()

    if not attendance_session:
        raise NotFoundError("Attendance session", str(session_id))

    return attendance_session


@db_operation
async def get_session_by_token(session: AsyncSession, token: str) -> AttendanceSession:
    """Resolve a scanned QR token"""
    if not token or not token.strip():
        raise ValidationError("QR token is required")

    result = await session.execute(
        select(AttendanceSession).where(AttendanceSession.qr_code_token == token.strip())
    )
    attendance_session = result.scalar_one_or_none()

    if not attendance_session:
        raise NotFoundError("Attendance session for QR token")

    return attendance_session


@db_operation
async def list_sessions(
    session: AsyncSession,
    created_by_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[AttendanceSession], int]:
    """Sessions ordered by session date, newest first"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")

    base_query = select(AttendanceSession)
    if created_by_id is not None:
        base_query = base_query.where(AttendanceSession.created_by_id == created_by_id)

    count_query = select(func.count()).select_from(base_query.subquery())
    total = (await session.execute(count_query)).scalar() or 0

    query = (
        base_query.order_by(
            AttendanceSession.session_date.desc(), AttendanceSession.id.desc()
        )
        .offset(skip)
        .limit(limit)
    )
    result = await session.execute(query)
    return list(result.scalars().all()), total


@db_operation
async def create_session(
    session: AsyncSession, data: AttendanceSessionCreate, issuer_id: Optional[int]
) -> AttendanceSession:
    """Create a session with a fresh QR token valid until the end of its week"""
    session_date = data.session_date

    attendance_session = AttendanceSession(
        title=data.title,
        description=data.description,
        session_date=as_utc(session_date),
        qr_code_token=generate_qr_token(),
        qr_code_expires_at=as_utc(end_of_week(session_date)),
        created_by_id=issuer_id,
    )
    session.add(attendance_session)
    await session.commit()
    await session.refresh(attendance_session)

    log_business_event(
        "attendance_session_created",
        "attendance_session",
        attendance_session.id,
        {"issuer_id": issuer_id, "expires_at": attendance_session.qr_code_expires_at.isoformat()},
    )
    return attendance_session


@db_operation
async def update_session(
    session: AsyncSession, session_id: int, patch: AttendanceSessionUpdate
) -> AttendanceSession:
    """Apply a partial update; the QR token is left as issued"""
    attendance_session = await get_session_by_id(session, session_id)

    update_data = patch.model_dump(exclude_unset=True)
    if "title" in update_data and update_data["title"] is None:
        raise ValidationError("Title cannot be null")
    if "session_date" in update_data:
        if update_data["session_date"] is None:
            raise ValidationError("Session date cannot be null")
        update_data["session_date"] = as_utc(update_data["session_date"])

    for key, value in update_data.items():
        setattr(attendance_session, key, value)

    await session.commit()
    await session.refresh(attendance_session)
    return attendance_session


@db_operation
async def regenerate_qr_code(session: AsyncSession, session_id: int) -> AttendanceSession:
    """Issue a new token; expiry is recomputed from the session date"""
    attendance_session = await get_session_by_id(session, session_id)

    attendance_session.qr_code_token = generate_qr_token()
    attendance_session.qr_code_expires_at = as_utc(
        end_of_week(as_utc(attendance_session.session_date))
    )

    await session.commit()
    await session.refresh(attendance_session)

    log_business_event(
        "attendance_qr_regenerated", "attendance_session", attendance_session.id
    )
    return attendance_session


@db_operation
async def delete_session(session: AsyncSession, session_id: int) -> int:
    """
    Delete a session and its attendance records in one transaction.

    Points already awarded stay in the ledger. Returns the number of
    attendance records removed.
    """
    await get_session_by_id(session, session_id)

    async def _delete_session_operation(session: AsyncSession) -> int:
        removed = await session.execute(
            delete(AttendanceRecord).where(AttendanceRecord.session_id == session_id)
        )
        await session.execute(
            delete(AttendanceSession).where(AttendanceSession.id == session_id)
        )
        return removed.rowcount or 0

    removed_records = await with_db_transaction(session, _delete_session_operation)

    log_business_event(
        "attendance_session_deleted",
        "attendance_session",
        session_id,
        {"removed_records": removed_records},
    )
    return removed_records
