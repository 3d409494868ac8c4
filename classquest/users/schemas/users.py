"""User Schemas"""
from pydantic import BaseModel
from typing import Optional, List

from classquest.users.models.users import UserRole


class UserBrief(BaseModel):
    id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        from_attributes = True


class UserRead(UserBrief):
    role: UserRole
    tutor_id: Optional[int] = None
    assisted_tutor_id: Optional[int] = None
    is_active: bool = True


class StudentListResponse(BaseModel):
    """Roster used by the manual and bulk check-in screens"""
    users: List[UserRead]
    total: int
