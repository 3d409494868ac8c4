from classquest.core.database import Base
from .users import User, UserRole, MANAGER_ROLES

__all__ = ["Base", "User", "UserRole", "MANAGER_ROLES"]
