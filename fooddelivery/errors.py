"""
Typed rejections raised by the order lifecycle, rider and payment operations.

Each error carries a human-readable message plus the HTTP status it maps to.
The FastAPI app renders them in one exception handler, so operations raise
instead of returning (ok, message) tuples.
"""


class ServiceError(Exception):
    """Base class for every expected business failure."""
    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    """An entity id does not resolve."""
    status_code = 404
    kind = "not_found"


class ForbiddenError(ServiceError):
    """Caller lacks the role or relationship the operation needs."""
    status_code = 403
    kind = "forbidden"


class InvalidStateError(ServiceError):
    """Operation not allowed from the current status, or a business rule failed."""
    status_code = 400
    kind = "invalid_state"


class ConflictError(ServiceError):
    """Lost a race against a concurrent write."""
    status_code = 409
    kind = "conflict"


class InvalidInputError(ServiceError):
    """Malformed input that passed schema parsing."""
    status_code = 422
    kind = "validation_error"


class UpstreamServiceError(ServiceError):
    """An external collaborator (payment processor) could not be reached."""
    status_code = 503
    kind = "service_unavailable"
