from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from classquest.core.database import get_session
from classquest.core.limits import limiter
from classquest.core.dependencies import require_manager
from classquest.users.crud.users import list_users, resolve_roster_tutor_id
from classquest.users.models.users import User, UserRole
from classquest.users.schemas.users import StudentListResponse, UserRead

router = APIRouter(prefix="/students", tags=["Students"])


@router.get("/", response_model=StudentListResponse)
@limiter.limit("30/minute")
async def get_students_list(
    request: Request,
    role: UserRole = Query(UserRole.STUDENT, description="Role to list"),
    tutor_id: Optional[int] = Query(
        None, gt=0, description="Admins only: students of this tutor"
    ),
    current_user: User = Depends(require_manager),
    db: AsyncSession = Depends(get_session),
):
    """
    Roster for the manual and bulk check-in screens.

    - Tutors get their own students
    - Assistants get the students of the tutor they assist
    - Admins get their own students, or another tutor's with **tutor_id**

    Other roles (e.g. `role=TUTOR` for a tutor filter) are listed unscoped.
    """
    if role != UserRole.STUDENT:
        users = await list_users(db, role=role)
    elif current_user.role == UserRole.ADMIN:
        users = await list_users(
            db, role=UserRole.STUDENT, tutor_id=tutor_id or current_user.id
        )
    else:
        roster_tutor_id = resolve_roster_tutor_id(current_user)
        if roster_tutor_id is None:
            users = []
        else:
            users = await list_users(db, role=UserRole.STUDENT, tutor_id=roster_tutor_id)

    return StudentListResponse(
        users=[UserRead.model_validate(user) for user in users],
        total=len(users),
    )
