"""Attendance Reporting - Read-only views over sessions and their records"""
from typing import Iterable, List

from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import db_operation
from classquest.core.timeutils import as_utc
from classquest.attendance.models.records import AttendanceRecord
from classquest.attendance.schemas.checkins import AttendeeStatus


@db_operation
async def attendance_count(session: AsyncSession, session_id: int) -> int:
    result = await session.execute(
        select(func.count(AttendanceRecord.id)).where(
            AttendanceRecord.session_id == session_id
        )
    )
    return int(result.scalar() or 0)


@db_operation
async def list_attendees_with_status(
    session: AsyncSession, session_id: int, roster: Iterable[int]
) -> List[AttendeeStatus]:
    """
    Join a roster of student ids against the session's attendance.

    Order follows the roster; duplicate ids are reported once.
    """
    student_ids = list(dict.fromkeys(roster))
    if not student_ids:
        return []

    result = await session.execute(
        select(
            AttendanceRecord.student_id,
            AttendanceRecord.check_in_time,
            AttendanceRecord.check_in_method,
        ).where(
            AttendanceRecord.session_id == session_id,
            AttendanceRecord.student_id.in_(student_ids),
        )
    )
    checked_in = {row.student_id: row for row in result.all()}

    statuses = []
    for student_id in student_ids:
        row = checked_in.get(student_id)
        if row is None:
            statuses.append(AttendeeStatus(student_id=student_id, checked_in=False))
        else:
            statuses.append(
                AttendeeStatus(
                    student_id=student_id,
                    checked_in=True,
                    check_in_time=as_utc(row.check_in_time),
                    method=row.check_in_method,
                )
            )
    return statuses
