"""Domain exceptions raised by the service layer.

The API layer maps each class to an HTTP status in one place
(see ``kanway.main``); services never build HTTP responses themselves.
"""


class KanwayError(Exception):
    """Base exception for matching and wallet operations"""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(KanwayError):
    """Malformed or out-of-range input; ``field`` names the first violation"""

    status_code = 422


class AuthorizationError(KanwayError):
    """Caller is not the principal required for the action"""

    status_code = 403


class NotFoundError(KanwayError):
    """Unknown request, provider, wallet or withdrawal"""

    status_code = 404


class ConflictError(KanwayError):
    """State no longer allows the operation; callers refresh and retry"""

    status_code = 409


class InsufficientBalanceError(KanwayError):
    """A debit would drive a balance past its floor"""

    status_code = 402


class RollbackFailureError(KanwayError):
    """A compensating action failed and left rows inconsistent.

    Requires manual reconciliation.
    """

    status_code = 500
