"""User CRUD - Lookups and rosters over the user directory"""
from typing import List, Optional

from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import db_operation
from classquest.core.exceptions import NotFoundError, ValidationError
from classquest.users.models.users import User, UserRole


@db_operation
async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    if user_id is None or user_id <= 0:
        raise ValidationError("User ID must be positive")

    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


@db_operation
async def get_student_or_404(session: AsyncSession, student_id: int) -> User:
    """Return the user if it exists and is a student"""
    user = await get_user_by_id(session, student_id)
    if user is None or user.role != UserRole.STUDENT:
        raise NotFoundError("Student", str(student_id))
    return user


@db_operation
async def list_users(
    session: AsyncSession,
    role: Optional[UserRole] = None,
    tutor_id: Optional[int] = None,
    active_only: bool = True,
    user_ids: Optional[List[int]] = None,
) -> List[User]:
    """Users ordered by first name, last name, username"""
    query = select(User)

    if role is not None:
        query = query.where(User.role == role)
    if tutor_id is not None:
        query = query.where(User.tutor_id == tutor_id)
    if active_only:
        query = query.where(User.is_active.is_(True))
    if user_ids is not None:
        if not user_ids:
            return []
        query = query.where(User.id.in_(user_ids))

    query = query.order_by(User.first_name, User.last_name, User.username)
    result = await session.execute(query)
    return list(result.scalars().all())


def resolve_roster_tutor_id(manager: User) -> Optional[int]:
    """
    Tutor whose students a manager works with.

    Tutors and admins work with their own students, assistants with the
    students of the tutor they assist (None when unassigned).
    """
    if manager.role == UserRole.ASISTAN:
        return manager.assisted_tutor_id
    return manager.id


@db_operation
async def get_manager_roster(session: AsyncSession, manager: User) -> List[User]:
    """Active students a manager may check in"""
    tutor_id = resolve_roster_tutor_id(manager)
    if tutor_id is None:
        return []
    return await list_users(session, role=UserRole.STUDENT, tutor_id=tutor_id)


def can_manage_student(manager: User, student: User) -> bool:
    """Tutors manage their own students, assistants their tutor's, admins everyone"""
    if manager.role == UserRole.ADMIN:
        return True
    if manager.role == UserRole.TUTOR:
        return student.tutor_id == manager.id
    if manager.role == UserRole.ASISTAN:
        return (
            manager.assisted_tutor_id is not None
            and student.tutor_id == manager.assisted_tutor_id
        )
    return False
