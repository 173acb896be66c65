"""
Failure kinds raised by the service layer.

Routers let these propagate; the handlers registered in ``portal.main`` turn
them into a generic JSON body with the matching status code. The client SDK
maps status codes back onto the same classes.
"""


class PortalError(Exception):
    status_code = 500
    public_detail = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_detail)
        self.message = message or self.public_detail


class PolicyDenied(PortalError):
    """An access-control predicate rejected the operation. Never retried."""

    status_code = 403
    public_detail = "Operation not permitted"


class ValidationFailed(PortalError):
    status_code = 422
    public_detail = "Invalid request"


class NotFound(PortalError):
    status_code = 404
    public_detail = "Not found"


class Conflict(PortalError):
    status_code = 409
    public_detail = "Conflicting state"


class TransientFailure(PortalError):
    """Storage or network unavailable; safe to retry with backoff."""

    status_code = 503
    public_detail = "Service temporarily unavailable"


ERRORS_BY_STATUS = {
    cls.status_code: cls
    for cls in (PolicyDenied, ValidationFailed, NotFound, Conflict, TransientFailure)
}
