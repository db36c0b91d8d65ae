"""Typed errors raised by the attempt services.

Routers translate these to HTTP responses. Malformed answers never raise;
they are scored as skipped or incorrect.
"""

from exam_engine.models.attempt import AttemptResult


class AttemptError(Exception):
    """Base class for user-actionable engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthorized(AttemptError):
    status_code = 403


class ExamNotAvailable(AttemptError):
    status_code = 403


class AttemptLimitReached(AttemptError):
    status_code = 409


class AttemptNotFound(AttemptError):
    status_code = 404


class AttemptNotFinalized(AttemptError):
    status_code = 409


class AttemptAlreadyFinalized(AttemptError):
    """Raised on a write to a terminal attempt.

    Carries the stored result so retries can be answered idempotently.
    """

    status_code = 409

    def __init__(self, message: str, result: AttemptResult):
        super().__init__(message)
        self.result = result


class CatalogError(Exception):
    """The catalog returned an exam or question that fails validation."""
