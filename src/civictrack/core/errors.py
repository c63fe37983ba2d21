"""Error taxonomy shared by the stores, the API and the orchestrator.

Each error carries the HTTP status the API layer translates it to.
"""


class CivicTrackError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code = 500
    error_type = "unexpected"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(CivicTrackError):
    """Malformed or missing input."""

    status_code = 400
    error_type = "validation_error"


class UnauthorizedError(CivicTrackError):
    """Caller lacks the privilege for the operation."""

    status_code = 403
    error_type = "unauthorized"


class NotFoundError(CivicTrackError):
    """Reference to a nonexistent issue, comment or user."""

    status_code = 404
    error_type = "not_found"


class ModelUnavailableError(CivicTrackError):
    """Language model backend is unreachable, misconfigured or timed out."""

    status_code = 503
    error_type = "model_unavailable"
