"""
Error taxonomy for the face match service.

Every error carries the HTTP status and the short label used in the
``{"error": ..., "message": ...}`` response envelope.
"""


class FaceMatchError(Exception):
    """Base class for service errors."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FaceMatchError):
    """Bad shape, length or type of caller input."""

    status_code = 400
    error = "Bad Request"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class AuthError(FaceMatchError):
    """Missing or invalid API key."""

    status_code = 401
    error = "Unauthorized"


class NotFoundError(FaceMatchError):
    status_code = 404
    error = "Not Found"


class StoreError(FaceMatchError):
    """Underlying persistence failure."""

    status_code = 500
    error = "Store Error"


class LogWriteError(FaceMatchError):
    """Access log write failure. Never surfaced to API callers."""
