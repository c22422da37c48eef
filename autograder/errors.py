"""
Error taxonomy for the grading engine.

Every failure the engine reports to a caller derives from GradingError.
MalformedAnswerError is the exception: it never leaves the grader, it is
turned into a zero-credit result for the one question it concerns.
"""


class GradingError(Exception):
    """Base class for all grading engine errors."""

    http_status: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(GradingError):
    """Raised when a submission, response, course record or enrollment is absent."""

    http_status = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class AlreadyGradedError(GradingError):
    """Raised when automated grading is requested for a finalized submission."""

    http_status = 409

    def __init__(self, submission_id: int):
        self.submission_id = submission_id
        super().__init__(f"Submission {submission_id} is already graded")


class InvalidInputError(GradingError):
    """Raised when a request is missing required identifiers or carries bad values."""

    http_status = 400


class MalformedAnswerError(GradingError):
    """Raised when a stored question or response payload does not fit its type."""

    http_status = 422

    def __init__(self, message: str, question_id: int | None = None):
        self.question_id = question_id
        super().__init__(message)


class StorageError(GradingError):
    """
    Raised when the Question Store fails.

    The active transaction is rolled back; callers only ever see a generic
    internal error.
    """

    http_status = 500

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)
