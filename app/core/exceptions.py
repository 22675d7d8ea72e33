"""Domain exceptions and the job error taxonomy.

Local contract violations (``AlreadyProcessing``, ``NotFound``, ``AlreadyResolved``) are raised
synchronously to the caller and translated to HTTP errors by the routes. Classifier failures are
raised as :class:`ClassifierError` and recorded on the job row by the batch scheduler.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Codes surfaced through ``error.code`` on the status projection."""

    AI_RATE_LIMITED = "AI_RATE_LIMITED"
    AI_TIMEOUT = "AI_TIMEOUT"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    JOB_INTERRUPTED = "JOB_INTERRUPTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DEFAULT_ERROR_MESSAGES = {
    ErrorCode.AI_RATE_LIMITED: "The AI service rate limit was reached. Wait a few minutes and try again.",
    ErrorCode.AI_TIMEOUT: "The AI service took too long to respond. Try again.",
    ErrorCode.AI_SERVICE_UNAVAILABLE: "The AI service is temporarily unavailable. Try again later.",
    ErrorCode.JOB_INTERRUPTED: "Categorization was interrupted by a server restart. Start again to resume.",
    ErrorCode.INTERNAL_ERROR: "Categorization failed because of an internal error.",
}

RETRYABLE_CODES = frozenset(
    {
        ErrorCode.AI_RATE_LIMITED,
        ErrorCode.AI_TIMEOUT,
        ErrorCode.AI_SERVICE_UNAVAILABLE,
        ErrorCode.JOB_INTERRUPTED,
    }
)


class CategorizationError(Exception):
    """Base class for categorization engine errors."""

    code = "CATEGORIZATION_ERROR"

    def __init__(self, message: str) -> None:
        """Store the human readable message."""
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, str]:
        """Return the ``detail`` payload used by HTTP error responses."""
        return {"code": self.code, "message": self.message}


class AlreadyProcessingError(CategorizationError):
    """A categorization job is already running for the user."""

    code = "AlreadyProcessing"

    def __init__(self, user_id: str) -> None:
        """Build the error for ``user_id``."""
        super().__init__(f"A categorization job is already processing for user '{user_id}'")
        self.user_id = user_id


class SuggestionNotFoundError(CategorizationError):
    """No suggestion with the given id exists for the user."""

    code = "NotFound"

    def __init__(self, suggestion_id: str) -> None:
        """Build the error for ``suggestion_id``."""
        super().__init__(f"Suggestion '{suggestion_id}' not found")
        self.suggestion_id = suggestion_id


class CategoryNotFoundError(CategorizationError):
    """An approve override pointed at a category the user does not have."""

    code = "NotFound"

    def __init__(self, category_id: str) -> None:
        """Build the error for ``category_id``."""
        super().__init__(f"Category '{category_id}' not found")
        self.category_id = category_id


class SuggestionAlreadyResolvedError(CategorizationError):
    """The suggestion was already approved or rejected."""

    code = "AlreadyResolved"

    def __init__(self, suggestion_id: str, status: str) -> None:
        """Build the error for ``suggestion_id`` currently in ``status``."""
        super().__init__(f"Suggestion '{suggestion_id}' is already {status}")
        self.suggestion_id = suggestion_id
        self.status = status


class ClassifierError(CategorizationError):
    """A failed call to the external classifier, mapped onto the job error taxonomy."""

    def __init__(self, code: ErrorCode, message: str | None = None, *, retryable: bool | None = None) -> None:
        """Build a classifier error; message and retryability default from the taxonomy."""
        super().__init__(message or DEFAULT_ERROR_MESSAGES[code])
        self.code = code
        self.retryable = code in RETRYABLE_CODES if retryable is None else retryable
