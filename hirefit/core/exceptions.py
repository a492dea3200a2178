from typing import Any, Dict, Optional

class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)

class ValidationError(AppException):
    """Unsupported file type, oversize upload or malformed request. Never retried."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=details
        )

class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND"
        )

class AccessDeniedError(AppException):
    """
    Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError.
    Raised both when a feature is not enabled and when a quota is exhausted; only the message differs.
    """
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )

class ConflictError(AppException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=409,
            error_code="CONFLICT"
        )

class AIError(AppException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: str = "AI_SERVICE_UNAVAILABLE"):
        super().__init__(
            message=message,
            status_code=503,
            error_code=error_code,
            details=details
        )

class ParseError(AIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, error_code="PARSE_ERROR")

class AnalysisError(AIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details, error_code="ANALYSIS_ERROR")

class AIKillSwitchError(AppException):
    def __init__(self):
        super().__init__(
            message="AI services are currently offline for maintenance.",
            status_code=503,
            error_code="AI_KILL_SWITCH_ACTIVE"
        )

class QueueError(AppException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=503,
            error_code="QUEUE_UNAVAILABLE"
        )

class UnknownMessageTypeError(Exception):
    def __init__(self, message_type: Any):
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type}")

class MalformedMessageError(Exception):
    pass
