"""Error taxonomy for the search service.

Every error carries a stable code and a user-safe message; internal details
stay in the logs.
"""


class SearchServiceError(Exception):
    """Base exception for search-service errors."""

    code = "internal_error"
    status_code = 500
    retryable = False
    default_message = "Search failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class Unauthenticated(SearchServiceError):
    """Raised when no valid principal accompanies the request."""

    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(SearchServiceError):
    """Raised on thread ownership mismatch or insufficient role."""

    code = "forbidden"
    status_code = 403
    default_message = "Access denied"


class InvalidInput(SearchServiceError):
    """Raised when a request is empty, too long or malformed."""

    code = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class ReasoningUnavailable(SearchServiceError):
    """Raised when the reasoning service fails or times out."""

    code = "reasoning_unavailable"
    status_code = 503
    retryable = True
    default_message = "The search assistant is temporarily unavailable. Please retry."


class PersistenceUnavailable(SearchServiceError):
    """Raised when the resume store or conversation store cannot be reached."""

    code = "persistence_unavailable"
    status_code = 503
    retryable = True
    default_message = "Search data is temporarily unavailable. Please retry."
