"""
Application exceptions for centralized error handling
"""

from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Base application exception"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Authentication ===
class AuthenticationError(BaseAppException):
    """Caller identity could not be established"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 401, "AUTHENTICATION_ERROR", details)


class AuthorizationError(BaseAppException):
    """Caller is known but lacks the required role"""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 403, "AUTHORIZATION_ERROR", details)


# === Validation ===
class ValidationError(BaseAppException):
    """Malformed input"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


# === Resources ===
class NotFoundError(BaseAppException):
    """Resource not found"""

    def __init__(self, resource: str, identifier: str = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": identifier}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, "NOT_FOUND", details)


class PermissionDeniedError(BaseAppException):
    """Access to a specific resource denied"""

    def __init__(self, action: str, resource: str, reason: str = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message += f" - {reason}"
        details = {"action": action, "resource": resource, "reason": reason}
        super().__init__(message, 403, "PERMISSION_DENIED", details)


# === Attendance ===
class AlreadyCheckedInError(BaseAppException):
    """An attendance record already exists for the (session, student) pair"""

    def __init__(self, session_id: int, student_id: int):
        message = f"Student {student_id} is already checked in to session {session_id}"
        details = {"session_id": session_id, "student_id": student_id}
        super().__init__(message, 409, "ALREADY_CHECKED_IN", details)


class NotCheckedInError(BaseAppException):
    """No attendance record exists for the (session, student) pair"""

    def __init__(self, session_id: int, student_id: int):
        message = f"Student {student_id} is not checked in to session {session_id}"
        details = {"session_id": session_id, "student_id": student_id}
        super().__init__(message, 409, "NOT_CHECKED_IN", details)


class SessionExpiredError(BaseAppException):
    """QR code of the session is past its expiry"""

    def __init__(self, session_id: int, expired_at: Any = None):
        message = f"QR code for session {session_id} has expired"
        details = {
            "session_id": session_id,
            "expired_at": expired_at.isoformat() if expired_at else None,
        }
        super().__init__(message, 410, "SESSION_EXPIRED", details)


# === Database ===
class DatabaseError(BaseAppException):
    """Database operation failed"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class DatabaseConnectionError(BaseAppException):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Database operation timed out"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Integrity constraint violated"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Configuration ===
class ConfigurationError(BaseAppException):
    """Configuration parameter is invalid or missing"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
