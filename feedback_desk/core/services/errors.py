from __future__ import annotations


class ServiceError(Exception):
    """Base class for failures that map onto an HTTP status class."""

    status_code = 500
    default_message = "internal_error"

    def __init__(self, message: str | None = None, *, details: list[str] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    default_message = "validation_error"


class Unauthenticated(ServiceError):
    status_code = 401
    default_message = "authentication_required"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_message = "not_found"


class Conflict(ServiceError):
    status_code = 409
    default_message = "conflict"


class UpstreamFailure(ServiceError):
    """AI backend or store unreachable, erroring or timing out."""

    status_code = 500
    default_message = "upstream_failure"
