"""
Service facade for the grading operations.

Accepts JSON request bodies as sent by the platform's API layer, validates
them, runs the matching operation and answers with a status code and a JSON
body. Grading errors map onto their HTTP status; store failures are reported
as a generic internal error without details.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from autograder.aggregation.engine import AggregationEngine
from autograder.config import Settings, get_settings
from autograder.errors import GradingError, StorageError
from autograder.grading.grader import ResponseGrader
from autograder.grading.similarity import SimilarityFunction
from autograder.store.base import QuestionStore
from autograder.store.sql import SqlQuestionStore

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


# ==============================================================================
# Request / Response Models
# ==============================================================================


class _Request(BaseModel):
    """Base for request bodies: camelCase keys, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class GradeSubmissionRequest(_Request):
    """Body of a grade-submission request."""

    submission_id: int | None = None


class ManualGradeRequest(_Request):
    """Body of a manual-grade request."""

    response_id: int | None = None
    score: Decimal | None = None
    feedback: str | None = None
    grader_id: int | None = None


class FinalGradeRequest(_Request):
    """Body of a final-grade request."""

    student_id: int | None = None
    course_id: int | None = None


class ServiceResponse(BaseModel):
    """Status code and JSON body answered to the caller."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(..., ge=100, le=599)
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status_code < 400


RequestT = TypeVar("RequestT", bound=_Request)


# ==============================================================================
# Service
# ==============================================================================


class GradingService:
    """
    Entry point for the three grading operations.

    The typed operations are available through ``grader`` and ``aggregator``;
    the ``handle_*`` methods wrap them for raw request bodies.
    """

    def __init__(
        self,
        store: QuestionStore,
        settings: Settings | None = None,
        similarity: SimilarityFunction | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.grader = ResponseGrader(store, self.settings, similarity)
        self.aggregator = AggregationEngine(store)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GradingService":
        """Build a service over the configured SQL Question Store."""
        settings = settings or get_settings()
        return cls(SqlQuestionStore.from_settings(settings), settings)

    def handle_grade_submission(self, body: str | bytes | dict[str, Any]) -> ServiceResponse:
        """Automatically grade a submission: ``{"submissionId": ...}``."""

        def run(request: GradeSubmissionRequest) -> dict[str, Any]:
            return self.grader.grade_submission(request.submission_id).to_payload()

        return self._handle(GradeSubmissionRequest, body, run)

    def handle_manual_grade(self, body: str | bytes | dict[str, Any]) -> ServiceResponse:
        """Record a manual score: ``{"responseId", "score", "feedback", "graderId"}``."""

        def run(request: ManualGradeRequest) -> dict[str, Any]:
            report = self.grader.manual_grade_question(
                request.response_id, request.score, request.feedback, request.grader_id
            )
            return {"message": "Question graded successfully", **report.to_payload()}

        return self._handle(ManualGradeRequest, body, run)

    def handle_final_grade(self, body: str | bytes | dict[str, Any]) -> ServiceResponse:
        """Calculate a final grade: ``{"studentId": ..., "courseId": ...}``."""

        def run(request: FinalGradeRequest) -> dict[str, Any]:
            report = self.aggregator.calculate_final_grade(request.student_id, request.course_id)
            return report.to_payload()

        return self._handle(FinalGradeRequest, body, run)

    def _handle(
        self,
        request_type: type[RequestT],
        body: str | bytes | dict[str, Any],
        operation: Callable[[RequestT], dict[str, Any]],
    ) -> ServiceResponse:
        """Validate a body, run an operation and map its errors to status codes."""
        try:
            if isinstance(body, (str, bytes)):
                request = request_type.model_validate_json(body)
            else:
                request = request_type.model_validate(body)
        except ValidationError as e:
            logger.info("Rejected %s: %s", request_type.__name__, e)
            return ServiceResponse(
                status_code=400, body={"message": f"Invalid request: {_first_error(e)}"}
            )

        try:
            return ServiceResponse(status_code=200, body=operation(request))
        except StorageError as e:
            logger.error("Internal error handling %s: %s", request_type.__name__, e)
            return ServiceResponse(status_code=500, body={"message": INTERNAL_ERROR_MESSAGE})
        except GradingError as e:
            return ServiceResponse(status_code=e.http_status, body={"message": e.message})


def _first_error(error: ValidationError) -> str:
    """Short description of the first validation problem."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]
