"""Leaderboard CRUD - Students joined with their experience"""
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import db_operation
from classquest.leaderboard.schemas.leaderboard import LeaderboardEntry
from classquest.points.crud.ledger import get_experiences
from classquest.users.crud.users import list_users
from classquest.users.models.users import UserRole


@db_operation
async def get_leaderboard_entries(
    session: AsyncSession, tutor_id: Optional[int] = None
) -> List[LeaderboardEntry]:
    """Active students in directory order, each with experience from the ledger"""
    students = await list_users(session, role=UserRole.STUDENT, tutor_id=tutor_id)
    experience = await get_experiences(session, [student.id for student in students])

    return [
        LeaderboardEntry(
            id=student.id,
            username=student.username,
            first_name=student.first_name,
            last_name=student.last_name,
            experience=experience.get(student.id, 0),
            tutor_id=student.tutor_id,
        )
        for student in students
    ]
