"""
Error taxonomy for the API.

Handlers raise these; the exception handlers registered in main.py render
every one of them as a fail envelope with the matching HTTP status.
"""


class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message


class AuthenticationMissing(ApiError):
    status_code = 401
    message = "Unauthorized access"


class AuthenticationInvalid(ApiError):
    status_code = 403
    message = "Forbidden access"


class AuthorizationDenied(ApiError):
    status_code = 403
    message = "Forbidden access"


class ValidationFailed(ApiError):
    status_code = 400
    message = "Invalid request"


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class Conflict(ApiError):
    status_code = 409
    message = "Already exists"


class StoreFailure(ApiError):
    status_code = 500
    message = "Database operation failed"


class UpstreamFailure(ApiError):
    status_code = 502
    message = "Payment provider error"


class InvalidSlotError(ValidationFailed, ValueError):
    """Slot label or booking date could not be parsed; also a ValueError for pydantic validators."""
