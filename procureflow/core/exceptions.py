"""Error taxonomy for the approval routing engine.

Every failure surfaced to a caller carries a stable ``code`` so the API
layer can map it to a response without inspecting messages.
"""

from typing import Any, Dict, Optional


class RoutingError(Exception):
    """Base class for errors raised by the routing engine."""

    code = "ROUTING_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


class ValidationError(RoutingError):
    """Malformed input, e.g. a rejection reason that is too short."""

    code = "VALIDATION_ERROR"
    http_status = 422


class UnauthorizedError(RoutingError):
    """Actor holds neither direct nor delegated authority for the step."""

    code = "UNAUTHORIZED"
    http_status = 403


class ConflictError(RoutingError):
    """Lost a concurrent update, or the action targets an already-advanced state.

    Callers should re-fetch the current state before retrying.
    """

    code = "CONFLICT"
    http_status = 409
    retryable = True


class NotFoundError(RoutingError):
    """Artifact, workflow, progress or delegation does not exist."""

    code = "NOT_FOUND"
    http_status = 404


class DependencyFailure(RoutingError):
    """A notification, email or document collaborator failed.

    Never propagated out of a state transition; recorded on the outbox
    message and logged.
    """

    code = "DEPENDENCY_FAILURE"
    http_status = 502
    retryable = True
