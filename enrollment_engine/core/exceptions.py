from typing import List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Missing or malformed input (school_id, year ids, unknown enum literal)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Duplicate rollover, held lock, or an edit against a closed enrollment."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class PrerequisiteFailure(ServiceError):
    """Business rule from the prerequisite check failed; execution must not proceed."""

    def __init__(self, message: str, warnings: Optional[List[str]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.warnings = warnings or []


class GradeGraphError(ServiceError):
    """Grade progression is misconfigured (cycle, foreign or inactive successor)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class DatastoreTransientError(ServiceError):
    """Connection loss or timeout that survived the bounded retries."""

    def __init__(self, message: str = "Datastore temporarily unavailable") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class RolloverExecutionError(ServiceError):
    """A rollover batch failed and was rolled back as a whole."""

    def __init__(self, message: str, student_id: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.student_id = student_id
