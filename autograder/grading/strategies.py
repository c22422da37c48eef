"""
Grading strategies, one per question type.

Each strategy maps a typed question and the student's response to a score,
a feedback message and a needs-manual-review flag. Strategies never touch
storage. They are registered against ``QuestionType`` members and looked up
by the enum, never by comparing type strings.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Annotated, Any, Callable, ClassVar

from pydantic import BaseModel, ConfigDict, StringConstraints, TypeAdapter

from autograder.config import Settings, get_settings
from autograder.grading.schemas import (
    AnyResponse,
    ChoiceResponse,
    ComputationalQuestion,
    FillInBlankQuestion,
    FillInBlankResponse,
    MatchingQuestion,
    MatchingResponse,
    MultipleAnswerQuestion,
    MultipleAnswerResponse,
    MultipleChoiceQuestion,
    Number,
    NumericResponse,
    Question,
    ShortAnswerQuestion,
    TrueFalseQuestion,
    TrueFalseResponse,
    parse_response,
)
from autograder.grading.similarity import SimilarityFunction, text_similarity
from autograder.models import QuestionType, round_score

logger = logging.getLogger(__name__)

NO_RESPONSE_FEEDBACK = "No response provided"
INVALID_FORMAT_FEEDBACK = "Invalid answer format"
MANUAL_REVIEW_FEEDBACK = "This response requires manual grading"


class StrategyOutcome(BaseModel):
    """Score, feedback and review flag produced for one question."""

    model_config = ConfigDict(frozen=True)

    score: Decimal
    feedback: str
    needs_manual_grading: bool = False

    @classmethod
    def manual(cls, feedback: str = MANUAL_REVIEW_FEEDBACK) -> "StrategyOutcome":
        """Zero automated score, deferred to a human grader."""
        return cls(score=Decimal(0), feedback=feedback, needs_manual_grading=True)

    @classmethod
    def no_response(cls) -> "StrategyOutcome":
        """A question the student left unanswered."""
        return cls(score=Decimal(0), feedback=NO_RESPONSE_FEEDBACK)

    @classmethod
    def invalid_format(cls) -> "StrategyOutcome":
        """A question or response whose payload does not fit its type."""
        return cls(score=Decimal(0), feedback=INVALID_FORMAT_FEEDBACK)


# =============================================================================
# Strategy Registry
# =============================================================================


class StrategyRegistry:
    """
    Registry mapping question types to grading strategies.

    Example:
        @StrategyRegistry.register(QuestionType.MATCHING)
        class MatchingStrategy(GradingStrategy):
            ...

        strategies = StrategyRegistry.build(settings)
        outcome = strategies[QuestionType.MATCHING].evaluate(question, data)
    """

    _strategies: ClassVar[dict[QuestionType, type["GradingStrategy"]]] = {}

    @classmethod
    def register(
        cls, *question_types: QuestionType
    ) -> Callable[[type["GradingStrategy"]], type["GradingStrategy"]]:
        """
        Decorator to register a strategy for one or more question types.

        Args:
            question_types: Types the decorated strategy grades.
        """

        def decorator(strategy_class: type["GradingStrategy"]) -> type["GradingStrategy"]:
            for question_type in question_types:
                cls._strategies[question_type] = strategy_class
                logger.debug(
                    "Registered strategy: %s -> %s", question_type.value, strategy_class.__name__
                )
            strategy_class.question_types = tuple(question_types)
            return strategy_class

        return decorator

    @classmethod
    def get(cls, question_type: QuestionType) -> type["GradingStrategy"]:
        """Get the strategy class for a question type."""
        if question_type not in cls._strategies:
            raise KeyError(f"No strategy registered for question type: {question_type.value}")
        return cls._strategies[question_type]

    @classmethod
    def missing(cls) -> list[QuestionType]:
        """Question types that have no registered strategy."""
        return [t for t in QuestionType if t not in cls._strategies]

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        similarity: SimilarityFunction | None = None,
    ) -> dict[QuestionType, "GradingStrategy"]:
        """
        Instantiate one strategy per question type.

        Args:
            settings: Grading configuration. Uses global settings if not provided.
            similarity: Text similarity function for short answers.

        Returns:
            Mapping of every question type to a configured strategy.

        Raises:
            KeyError: If a question type has no registered strategy.
        """
        missing = cls.missing()
        if missing:
            raise KeyError(f"No strategy registered for: {[t.value for t in missing]}")

        settings = settings or get_settings()
        instances: dict[type[GradingStrategy], GradingStrategy] = {}
        for strategy_class in set(cls._strategies.values()):
            instances[strategy_class] = strategy_class(settings, similarity or text_similarity)

        return {t: instances[cls._strategies[t]] for t in QuestionType}


# =============================================================================
# Base Grading Strategy
# =============================================================================


class GradingStrategy(ABC):
    """
    Abstract base class for grading strategies.

    Subclasses declare the pydantic type of the response they accept in
    ``response_type`` and implement ``grade``.
    """

    question_types: ClassVar[tuple[QuestionType, ...]] = ()
    response_type: ClassVar[Any] = AnyResponse

    def __init__(self, settings: Settings, similarity: SimilarityFunction = text_similarity):
        """
        Initialize strategy.

        Args:
            settings: Grading configuration.
            similarity: Text similarity function (only used for free text).
        """
        self._settings = settings
        self._similarity = similarity
        self._response_adapter: TypeAdapter[Any] = TypeAdapter(self.response_type)

    def evaluate(self, question: Question, response_data: Any) -> StrategyOutcome:
        """
        Validate the response payload and grade it.

        Raises:
            MalformedAnswerError: If the response does not fit ``response_type``.
        """
        return self.grade(question, self.parse(question, response_data))

    def parse(self, question: Question, response_data: Any) -> Any:
        """Validate the raw response payload for this question."""
        return parse_response(self._response_adapter, response_data, question.question_id)

    @abstractmethod
    def grade(self, question: Any, response: Any) -> StrategyOutcome:
        """
        Grade a validated response.

        Args:
            question: The typed question.
            response: The validated response payload.

        Returns:
            StrategyOutcome with score and feedback.
        """
        ...

    def _round(self, value: Decimal) -> Decimal:
        """Round a proportional score to the configured precision."""
        return round_score(value, self._settings.score_decimal_places)

    def _proportional(self, correct: int, total: int, points: int) -> Decimal:
        """Points for ``correct`` out of ``total`` parts, never below zero."""
        score = Decimal(correct) * Decimal(points) / Decimal(total)
        return self._round(max(Decimal(0), score))

    @staticmethod
    def _normalize_choice(value: Any) -> Any:
        """Trim string choices; leave other identifiers untouched."""
        return value.strip() if isinstance(value, str) else value


# =============================================================================
# Exact Choice Strategies
# =============================================================================


@StrategyRegistry.register(QuestionType.TRUE_FALSE)
class TrueFalseStrategy(GradingStrategy):
    """Full points when the chosen truth value matches, otherwise zero."""

    response_type = TrueFalseResponse

    def grade(self, question: TrueFalseQuestion, response: bool) -> StrategyOutcome:
        is_correct = response == question.correct_answer
        return StrategyOutcome(
            score=Decimal(question.points) if is_correct else Decimal(0),
            feedback="Correct answer" if is_correct else "Incorrect answer",
        )


@StrategyRegistry.register(QuestionType.MULTIPLE_CHOICE)
class MultipleChoiceStrategy(GradingStrategy):
    """Full points when the chosen option matches the key, otherwise zero."""

    response_type = ChoiceResponse

    def grade(self, question: MultipleChoiceQuestion, response: Any) -> StrategyOutcome:
        is_correct = self._normalize_choice(response) == self._normalize_choice(
            question.correct_answer
        )
        return StrategyOutcome(
            score=Decimal(question.points) if is_correct else Decimal(0),
            feedback="Correct answer" if is_correct else "Incorrect answer",
        )


@StrategyRegistry.register(QuestionType.MULTIPLE_ANSWER)
class MultipleAnswerStrategy(GradingStrategy):
    """
    Select-all-that-apply grading.

    Every option is an independent decision: selecting a wrong option and
    missing a correct one each cost one decision out of N.
    """

    response_type = MultipleAnswerResponse

    def grade(self, question: MultipleAnswerQuestion, response: list[Any]) -> StrategyOutcome:
        correct = {self._normalize_choice(a) for a in question.correct_answer}
        selected = {self._normalize_choice(a) for a in response}

        incorrect_selections = len(selected - correct)
        missed_correct = len(correct - selected)

        total_decisions = question.decision_count
        correct_decisions = total_decisions - incorrect_selections - missed_correct
        score = self._proportional(correct_decisions, total_decisions, question.points)

        if incorrect_selections == 0 and missed_correct == 0:
            feedback = "All correct options selected"
        elif incorrect_selections > 0 and missed_correct > 0:
            feedback = "Some incorrect options selected and some correct options missed"
        elif incorrect_selections > 0:
            feedback = "Some incorrect options selected"
        else:
            feedback = "Some correct options missed"

        return StrategyOutcome(score=score, feedback=feedback)


@StrategyRegistry.register(QuestionType.MATCHING)
class MatchingStrategy(GradingStrategy):
    """Proportional credit per correctly matched pair."""

    response_type = MatchingResponse

    def grade(self, question: MatchingQuestion, response: dict[str, Any]) -> StrategyOutcome:
        total = len(question.correct_answer)
        correct_count = sum(
            1
            for left, right in question.correct_answer.items()
            if left in response
            and self._normalize_choice(response[left]) == self._normalize_choice(right)
        )

        return StrategyOutcome(
            score=self._proportional(correct_count, total, question.points),
            feedback=f"{correct_count} out of {total} matches correct",
        )


# =============================================================================
# Text Strategies
# =============================================================================


@StrategyRegistry.register(QuestionType.FILL_IN_BLANK)
class FillInBlankStrategy(GradingStrategy):
    """
    Per-blank comparison against one accepted answer or a list of alternatives.

    Comparison trims whitespace and ignores case unless the question sets
    ``caseSensitive``. An empty blank is wrong.
    """

    response_type = FillInBlankResponse

    def grade(
        self, question: FillInBlankQuestion, response: dict[str, str | None]
    ) -> StrategyOutcome:
        case_sensitive = question.metadata.case_sensitive
        total = len(question.correct_answer)
        correct_count = 0

        for blank_id, accepted in question.correct_answer.items():
            answer = response.get(blank_id)
            if not answer:
                continue

            alternatives = accepted if isinstance(accepted, list) else [accepted]
            if any(self._answers_match(answer, alt, case_sensitive) for alt in alternatives):
                correct_count += 1

        if correct_count == total:
            feedback = "All answers correct"
        elif correct_count == 0:
            feedback = "All answers incorrect"
        else:
            feedback = f"{correct_count} out of {total} answers correct"

        review_threshold = question.metadata.review_threshold
        needs_review = question.metadata.always_review or (
            review_threshold is not None and correct_count / total < review_threshold
        )

        return StrategyOutcome(
            score=self._proportional(correct_count, total, question.points),
            feedback=feedback,
            needs_manual_grading=needs_review,
        )

    @staticmethod
    def _answers_match(answer: str, accepted: str, case_sensitive: bool) -> bool:
        if not case_sensitive:
            answer = answer.lower()
            accepted = accepted.lower()
        return answer.strip() == accepted.strip()


@StrategyRegistry.register(QuestionType.SHORT_ANSWER)
class ShortAnswerStrategy(GradingStrategy):
    """
    Similarity-banded grading of brief free-text answers.

    At or above the threshold the answer earns full points. Inside the
    partial-credit band below it the answer earns partial points and is sent
    for review; anything lower scores zero and is also sent for review.
    """

    response_type = Annotated[str, StringConstraints(strict=True, strip_whitespace=True, min_length=1)]

    def grade(self, question: ShortAnswerQuestion, response: str) -> StrategyOutcome:
        threshold = (
            question.metadata.similarity_threshold
            or self._settings.default_similarity_threshold
        )
        similarity = self._similarity(response, question.correct_answer)

        if similarity >= threshold:
            outcome = StrategyOutcome(
                score=Decimal(question.points),
                feedback="Answer matches expected response",
            )
        elif similarity >= threshold * self._settings.partial_credit_band:
            partial = Decimal(question.points) * Decimal(str(self._settings.partial_credit_factor))
            outcome = StrategyOutcome(
                score=self._round(partial),
                feedback="Answer partially matches expected response",
                needs_manual_grading=True,
            )
        else:
            outcome = StrategyOutcome(
                score=Decimal(0),
                feedback="Answer does not match expected response",
                needs_manual_grading=True,
            )

        logger.debug(
            "Short answer %s similarity %.3f (threshold %.2f)",
            question.question_id,
            similarity,
            threshold,
        )

        if question.metadata.always_review and not outcome.needs_manual_grading:
            return outcome.model_copy(update={"needs_manual_grading": True})
        return outcome


# =============================================================================
# Computational Strategy
# =============================================================================


@StrategyRegistry.register(QuestionType.COMPUTATIONAL)
class ComputationalStrategy(GradingStrategy):
    """
    Numeric answers are compared within a tolerance; formulas and other
    computational answers go to a human.
    """

    response_type = NumericResponse

    _number_adapter: ClassVar[TypeAdapter[Any]] = TypeAdapter(Number)

    def parse(self, question: ComputationalQuestion, response_data: Any) -> Any:
        if question.metadata.computation != "numeric":
            return response_data
        return super().parse(question, response_data)

    def grade(self, question: ComputationalQuestion, response: Any) -> StrategyOutcome:
        computation = question.metadata.computation

        if computation == "formula":
            return StrategyOutcome.manual("Formula evaluation requires manual grading")
        if computation != "numeric":
            return StrategyOutcome.manual("This computational question requires manual grading")

        expected = parse_response(
            self._number_adapter, question.correct_answer, question.question_id
        )
        is_correct = abs(response - expected) <= question.metadata.tolerance

        return StrategyOutcome(
            score=Decimal(question.points) if is_correct else Decimal(0),
            feedback="Correct answer" if is_correct else "Incorrect answer",
            needs_manual_grading=not is_correct and question.metadata.review_incorrect,
        )


# =============================================================================
# Manual Strategies
# =============================================================================


@StrategyRegistry.register(QuestionType.CODING)
class CodingStrategy(GradingStrategy):
    """Code is never executed here; a human or a test runner grades it."""

    def grade(self, question: Any, response: Any) -> StrategyOutcome:
        return StrategyOutcome.manual(
            "Code evaluation requires manual grading or test case execution"
        )


@StrategyRegistry.register(
    QuestionType.ESSAY,
    QuestionType.DIAGRAM,
    QuestionType.ORAL,
    QuestionType.DRAG_DROP,
)
class ManualReviewStrategy(GradingStrategy):
    """Question types with no automatic evaluation at all."""

    def grade(self, question: Any, response: Any) -> StrategyOutcome:
        return StrategyOutcome.manual("This question type requires manual grading")
