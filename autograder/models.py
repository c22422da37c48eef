"""
Pydantic models for the grading engine.

These models define the schemas for:
- Records read from the Question Store (questions, responses, submissions,
  categories, assignments, grading-scale thresholds)
- Reports returned by the grading and aggregation operations

Records carry stored payloads untouched; the per-type answer schemas in
``autograder.grading.schemas`` validate them before any strategy runs.
Reports serialize with camelCase keys to match the service contract.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, NamedTuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def to_decimal(value: Any) -> Decimal:
    """Convert numeric values to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Boolean is not a numeric value")
    return Decimal(str(value))


def round_score(value: Decimal, places: int = 2) -> Decimal:
    """Round a score half-up to a fixed number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


# Decimals are exchanged as JSON numbers, not strings.
Score = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# ==============================================================================
# Enumerations
# ==============================================================================


class QuestionType(str, Enum):
    """Closed set of question types known to the platform."""

    TRUE_FALSE = "true_false"
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_ANSWER = "multiple_answer"
    MATCHING = "matching"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_IN_BLANK = "fill_in_blank"
    COMPUTATIONAL = "computational"
    DIAGRAM = "diagram"
    DRAG_DROP = "drag_drop"
    CODING = "coding"
    ORAL = "oral"


class SubmissionStatus(str, Enum):
    """Lifecycle status of a submission."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    LATE = "late"
    GRADED = "graded"


# ==============================================================================
# Question Store Records
# ==============================================================================


class QuestionRecord(BaseModel):
    """
    A question as stored.

    The type, points and payloads are kept as stored so an unknown type or a
    malformed payload is reported per question instead of failing the read.
    """

    model_config = ConfigDict(frozen=True)

    question_id: int
    question_type: str
    points: int
    options: Any = None
    correct_answer: Any = None
    metadata: Any = Field(default_factory=dict)
    order_num: int = 0

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> Any:
        """Treat a NULL metadata column as no grading hints."""
        return {} if v is None else v


class ResponseRecord(BaseModel):
    """A student's stored answer to one question of one submission."""

    model_config = ConfigDict(frozen=True)

    response_id: int
    submission_id: int
    question_id: int
    response_data: Any = None
    score: Decimal | None = None
    feedback: str | None = None
    graded_at: datetime | None = None
    graded_by: int | None = None

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal | None:
        """Convert numeric values to Decimal for precision."""
        return None if v is None else to_decimal(v)


class SubmissionRecord(BaseModel):
    """A submission joined with the point total of its assignment."""

    model_config = ConfigDict(frozen=True)

    submission_id: int
    assignment_id: int
    student_id: int
    status: SubmissionStatus
    max_points: Decimal
    total_score: Decimal | None = None
    graded_at: datetime | None = None
    graded_by: int | None = None

    @field_validator("max_points", "total_score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal | None:
        """Convert numeric values to Decimal for precision."""
        return None if v is None else to_decimal(v)

    @property
    def is_graded(self) -> bool:
        """Whether the submission has been finalized."""
        return self.status == SubmissionStatus.GRADED


class QuestionSlot(NamedTuple):
    """A question of an assignment paired with the submission's response, if any."""

    question: QuestionRecord
    response: ResponseRecord | None


class AssignmentRecord(BaseModel):
    """A published assignment counted toward its category."""

    model_config = ConfigDict(frozen=True)

    assignment_id: int
    category_id: int
    title: str
    total_points: int = Field(..., ge=0)


class CategoryRecord(BaseModel):
    """A weighted assignment category of a course with its published assignments."""

    model_config = ConfigDict(frozen=True)

    category_id: int
    course_id: int
    name: str
    weight: Decimal
    assignments: tuple[AssignmentRecord, ...] = ()

    @field_validator("weight", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return to_decimal(v)

    @property
    def total_points(self) -> int:
        """Sum of the points of every assignment in the category."""
        return sum(a.total_points for a in self.assignments)


class GradeThreshold(BaseModel):
    """One letter grade of a grading scale, covering [min_score, max_score]."""

    model_config = ConfigDict(frozen=True)

    grade: str = Field(..., min_length=1, max_length=10)
    min_score: Decimal
    max_score: Decimal

    @field_validator("min_score", "max_score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:
        """Convert numeric values to Decimal for precision."""
        return to_decimal(v)

    def contains(self, value: Decimal) -> bool:
        """Check whether a grade falls in this range, both ends inclusive."""
        return self.min_score <= value <= self.max_score


# ==============================================================================
# Report Models
# ==============================================================================


class _Report(BaseModel):
    """Base for reports: immutable, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible camelCase payload."""
        return self.model_dump(mode="json", by_alias=True)


class QuestionGradingResult(_Report):
    """Outcome of grading one question of a submission."""

    question_id: int
    response_id: int | None = None
    score: Score
    feedback: str
    needs_manual_grading: bool


class SubmissionGradingReport(_Report):
    """Result of automatically grading a whole submission."""

    submission_id: int
    total_score: Score
    max_points: Score
    needs_manual_grading: bool
    grading_results: tuple[QuestionGradingResult, ...]

    @model_validator(mode="after")
    def validate_manual_flag(self) -> "SubmissionGradingReport":
        """Ensure the submission flag agrees with the per-question flags."""
        expected = any(r.needs_manual_grading for r in self.grading_results)
        if self.needs_manual_grading != expected:
            raise ValueError("needs_manual_grading must reflect the per-question results")
        return self

    @computed_field(alias="pendingReviewCount")  # type: ignore[prop-decorator]
    @property
    def pending_review_count(self) -> int:
        """Number of questions waiting for a human grader."""
        return sum(1 for r in self.grading_results if r.needs_manual_grading)


class ManualGradeReport(_Report):
    """Result of recording a human-assigned score for one response."""

    response_id: int
    submission_id: int
    score: Score
    submission_finalized: bool
    total_score: Score | None = None


class AssignmentGrade(_Report):
    """Per-assignment line of a category breakdown."""

    assignment_id: int
    title: str
    total_points: Score
    earned_points: Score
    percentage: Score


class CategoryGrade(_Report):
    """Per-category line of a final grade breakdown."""

    category_id: int
    name: str
    weight: Score
    percentage: Score
    weighted_score: Score
    assignments: tuple[AssignmentGrade, ...] = ()


class FinalGradeReport(_Report):
    """Weighted final course grade of a student with its breakdown."""

    student_id: int
    course_id: int
    final_grade: Score
    letter_grade: str | None = None
    category_grades: tuple[CategoryGrade, ...]
