from classquest.core.database import Base
from .sessions import AttendanceSession
from .records import AttendanceRecord, CheckInMethod

__all__ = ["Base", "AttendanceSession", "AttendanceRecord", "CheckInMethod"]
