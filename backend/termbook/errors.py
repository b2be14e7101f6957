"""Error taxonomy shared by the store, services and HTTP layer.

Services raise these and the FastAPI application maps them onto status
codes. None of them is retried by the core.
"""


class TermbookError(Exception):
    """Base class for all domain errors."""


class ValidationError(TermbookError, ValueError):
    """Invalid input: blank name, unknown activity type, malformed payload."""


class ConflictError(TermbookError):
    """Duplicate category name/key, parent cycle, or a blocked delete."""


class NotFoundError(TermbookError):
    """A referenced category, term or document does not exist."""


class StoreError(TermbookError):
    """The underlying document store call failed."""


class PartialFailure(TermbookError):
    """The activity log was written but the daily summary update failed.

    `log_id` is the identity of the log that did get persisted so callers
    can still report it; `cause` is the original exception.
    """

    def __init__(self, log_id: str, cause: Exception):
        super().__init__(f"activity {log_id} recorded but daily summary update failed: {cause}")
        self.log_id = log_id
        self.cause = cause
