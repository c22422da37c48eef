"""
Typed answer schemas, one per question type.

Stored questions carry loosely-typed JSON in ``options``,
``correct_answer`` and ``metadata``. Before a question reaches a grading
strategy it is validated into one member of the ``Question`` discriminated
union below; the student's ``response_data`` is validated against the
response type the strategy declares. Anything that does not fit raises
MalformedAnswerError, which the grader turns into a zero-credit result for
that question alone.
"""

from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from autograder.errors import MalformedAnswerError
from autograder.models import QuestionRecord, QuestionType, to_decimal

# Choice identifiers as sent by the client: option ids, values or indexes.
Choice = Union[StrictStr, StrictInt]


def _coerce_number(value: Any) -> Decimal:
    """Parse numeric answers, including numbers typed into a text box."""
    if isinstance(value, str):
        value = value.strip()
    try:
        number = to_decimal(value)
    except (ArithmeticError, ValueError, TypeError) as e:
        raise ValueError(f"Not a number: {value!r}") from e
    if not number.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return number


Number = Annotated[Decimal, BeforeValidator(_coerce_number)]


# ==============================================================================
# Grading Metadata
# ==============================================================================


class QuestionMetadata(BaseModel):
    """
    Grading hints attached to a question.

    Keys are camelCase in storage (``caseSensitive``, ``alwaysReview``...).
    Unknown keys are ignored; authoring tools store presentation data here too.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    case_sensitive: bool = False
    similarity_threshold: float | None = Field(default=None, gt=0.0, le=1.0)
    always_review: bool = False
    review_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    tolerance: Number = Decimal(0)
    review_incorrect: bool = False
    requires_manual_grading: bool = False
    computation: str | None = Field(default=None, alias="type")

    @field_validator(
        "case_sensitive",
        "always_review",
        "review_incorrect",
        "requires_manual_grading",
        "tolerance",
        mode="before",
    )
    @classmethod
    def null_means_default(cls, v: Any, info: ValidationInfo) -> Any:
        """A hint stored as null falls back to its default."""
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("tolerance")
    @classmethod
    def validate_tolerance(cls, v: Decimal) -> Decimal:
        """Tolerance is a distance and cannot be negative."""
        if v < 0:
            raise ValueError("tolerance must not be negative")
        return v


# ==============================================================================
# Question Schemas
# ==============================================================================


class _QuestionBase(BaseModel):
    """Fields shared by every question type."""

    model_config = ConfigDict(frozen=True)

    question_id: int
    points: int = Field(..., gt=0)
    metadata: QuestionMetadata = Field(default_factory=QuestionMetadata)

    @property
    def kind(self) -> QuestionType:
        """The question type as an enum member."""
        return QuestionType(self.type)  # type: ignore[attr-defined]


class TrueFalseQuestion(_QuestionBase):
    type: Literal["true_false"]
    options: Any = None
    correct_answer: bool


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple_choice"]
    options: list[Any] | None = None
    correct_answer: Choice


class MultipleAnswerQuestion(_QuestionBase):
    """Select-all-that-apply question; every option is an independent decision."""

    type: Literal["multiple_answer"]
    options: list[Any] | None = None
    correct_answer: list[Choice] = Field(..., min_length=1)

    @property
    def decision_count(self) -> int:
        """Number of select/don't-select decisions the student makes."""
        if self.options:
            return len(self.options)
        # Without an option list, assume two distractors besides the correct choices
        return len(self.correct_answer) + 2


class MatchingOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    left: list[Any] = Field(default_factory=list)
    right: list[Any] = Field(default_factory=list)


class MatchingQuestion(_QuestionBase):
    type: Literal["matching"]
    options: MatchingOptions | None = None
    correct_answer: dict[str, Choice] = Field(..., min_length=1)


class BlankDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    width: int = 100


class FillInBlankOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    blanks: list[BlankDefinition] = Field(default_factory=list)


class FillInBlankQuestion(_QuestionBase):
    """Blanks keyed by id; each accepts one answer or a list of alternatives."""

    type: Literal["fill_in_blank"]
    options: FillInBlankOptions | None = None
    correct_answer: dict[str, StrictStr | list[StrictStr]] = Field(..., min_length=1)


class ShortAnswerQuestion(_QuestionBase):
    type: Literal["short_answer"]
    options: Any = None
    correct_answer: StrictStr = Field(..., min_length=1)


class ComputationalQuestion(_QuestionBase):
    """
    Calculation question.

    Only ``metadata.type == "numeric"`` questions are graded automatically,
    so the answer key is parsed lazily by the numeric strategy.
    """

    type: Literal["computational"]
    options: Any = None
    correct_answer: Any = None


class ManualQuestion(_QuestionBase):
    """Question types that are never evaluated automatically."""

    type: Literal["essay", "coding", "diagram", "oral", "drag_drop"]
    options: Any = None
    correct_answer: Any = None


Question = Annotated[
    Union[
        TrueFalseQuestion,
        MultipleChoiceQuestion,
        MultipleAnswerQuestion,
        MatchingQuestion,
        FillInBlankQuestion,
        ShortAnswerQuestion,
        ComputationalQuestion,
        ManualQuestion,
    ],
    Field(discriminator="type"),
]

_question_adapter: TypeAdapter[Question] = TypeAdapter(Question)


# ==============================================================================
# Response Schemas
# ==============================================================================

TrueFalseResponse = bool
ChoiceResponse = Choice
MultipleAnswerResponse = list[Choice]
MatchingResponse = dict[str, Choice | None]
FillInBlankResponse = dict[str, StrictStr | None]
ShortAnswerResponse = StrictStr
NumericResponse = Number
AnyResponse = Any


def parse_question(record: QuestionRecord) -> Question:
    """
    Validate a stored question into its typed schema.

    Args:
        record: The question as read from the Question Store.

    Returns:
        The typed question.

    Raises:
        MalformedAnswerError: If the type is unknown or the payload does not fit it.
    """
    try:
        return _question_adapter.validate_python(
            {
                "question_id": record.question_id,
                "type": record.question_type,
                "points": record.points,
                "options": record.options,
                "correct_answer": record.correct_answer,
                "metadata": record.metadata,
            }
        )
    except ValidationError as e:
        raise MalformedAnswerError(
            f"Question {record.question_id} ({record.question_type}) is malformed: "
            f"{e.error_count()} validation error(s)",
            question_id=record.question_id,
        ) from e


def parse_metadata(record: QuestionRecord) -> QuestionMetadata:
    """
    Validate only the grading hints of a stored question.

    Raises:
        MalformedAnswerError: If the metadata does not fit the schema.
    """
    try:
        return QuestionMetadata.model_validate(record.metadata)
    except ValidationError as e:
        raise MalformedAnswerError(
            f"Question {record.question_id} has malformed metadata",
            question_id=record.question_id,
        ) from e


def parse_response(adapter: TypeAdapter[Any], data: Any, question_id: int) -> Any:
    """
    Validate a student's response payload against a strategy's response type.

    Raises:
        MalformedAnswerError: If the payload does not fit.
    """
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedAnswerError(
            f"Response to question {question_id} is malformed",
            question_id=question_id,
        ) from e
