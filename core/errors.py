"""
Shared error types for core services.
"""


class ServiceError(Exception):
    """Base class for typed failures returned by core services."""

    error_code = "service_error"
    status_code = 500

    def __init__(self, message: str, data: dict | None = None):
        super().__init__(message)
        self.data = data


class NotFoundError(ServiceError):
    error_code = "not_found"
    status_code = 404


class ForbiddenError(ServiceError):
    """Actor is not a party, or is the wrong party for this transition."""

    error_code = "forbidden"
    status_code = 403


class InvalidStateError(ServiceError):
    """Operation is not legal from the current status."""

    error_code = "invalid_state"
    status_code = 409


class ConflictError(ServiceError):
    error_code = "conflict"
    status_code = 409


class AlreadyDoneError(ServiceError):
    error_code = "already_done"
    status_code = 409


class AlreadyAgreedError(AlreadyDoneError):
    error_code = "already_agreed"


class AlreadyCompletedError(AlreadyDoneError):
    error_code = "already_completed"


class SelfReferenceError(ServiceError):
    error_code = "self_reference"
    status_code = 400


class ValidationIssue(ValueError):
    error_code = "validation_failed"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        if error_code is not None:
            self.error_code = error_code
        self.data = data
