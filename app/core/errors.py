"""
Error taxonomy shared by the category and ad services.

Services raise these; routes turn them into HTTPException with the
structured detail dict used across the API.
"""
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, DatabaseError, OperationalError


class DirectoryError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "DirectoryError"
    type = "internal_error"

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict:
        detail = {
            "error": self.error,
            "message": self.message,
            "type": self.type,
        }
        if self.field:
            detail["field"] = self.field
        return detail


class InvalidInputError(DirectoryError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "ValidationError"
    type = "invalid_input"


class ForbiddenError(DirectoryError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "ForbiddenError"
    type = "forbidden"


class NotFoundError(DirectoryError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "NotFoundError"
    type = "resource_not_found"


class ConflictError(DirectoryError):
    status_code = status.HTTP_409_CONFLICT
    error = "ConflictError"
    type = "conflict"


class InvalidOperationError(ConflictError):
    """Structural violation of the category tree (self-parenting, cycles)."""
    error = "InvalidOperationError"
    type = "invalid_operation"


class StorageUnavailableError(DirectoryError):
    error = "StorageServiceError"
    type = "service_unavailable"


class ImageUploadError(DirectoryError):
    error = "ImageUploadError"
    type = "storage_error"


def to_http_exception(e: DirectoryError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


def parse_exception_to_error_detail(e: Exception) -> dict:
    """Parse exception into structured error detail dictionary"""
    if isinstance(e, IntegrityError):
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if "unique constraint" in error_msg.lower() or "duplicate key" in error_msg.lower():
            return {
                "error": "DuplicateEntryError",
                "message": "A record with the same unique value already exists",
                "type": "duplicate_constraint",
                "suggestion": "Please retry the request"
            }
        elif "not null" in error_msg.lower():
            return {
                "error": "MissingRequiredFieldError",
                "message": "Required fields are missing",
                "type": "missing_field",
                "suggestion": "Please ensure all required fields are provided"
            }

    elif isinstance(e, OperationalError):
        return {
            "error": "DatabaseConnectionError",
            "message": "Unable to connect to the database",
            "type": "database_connection",
            "suggestion": "Please try again later"
        }

    elif isinstance(e, DatabaseError):
        return {
            "error": "DatabaseError",
            "message": "A database error occurred",
            "type": "database_error",
            "suggestion": "Please verify your data and try again"
        }

    return {
        "error": "UnexpectedError",
        "message": "An unexpected error occurred",
        "type": "internal_error",
        "suggestion": "Please try again or contact support"
    }


def unexpected_http_exception(e: Exception) -> HTTPException:
    """Map an unclassified exception to 503 for connection failures, 500 otherwise."""
    if isinstance(e, OperationalError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=parse_exception_to_error_detail(e))
