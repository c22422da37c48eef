"""
Unit tests for the per-question-type grading strategies.

Questions go through the same schema validation as in production; the
short-answer bands are exercised with a fixed similarity function so exact
similarity values can be hit.
"""

from decimal import Decimal
from typing import Any, Callable

import pytest
from pydantic import ValidationError

from autograder.config import Settings
from autograder.grading.grader import ResponseGrader
from autograder.grading.strategies import (
    INVALID_FORMAT_FEEDBACK,
    MANUAL_REVIEW_FEEDBACK,
    NO_RESPONSE_FEEDBACK,
    ManualReviewStrategy,
    StrategyOutcome,
    StrategyRegistry,
)
from autograder.models import QuestionRecord, QuestionType, ResponseRecord
from autograder.store.memory import InMemoryQuestionStore


def _question(
    question_type: QuestionType | str,
    points: int,
    correct_answer: Any = None,
    options: Any = None,
    metadata: dict[str, Any] | None = None,
) -> QuestionRecord:
    return QuestionRecord(
        question_id=1,
        question_type=(
            question_type.value if isinstance(question_type, QuestionType) else question_type
        ),
        points=points,
        correct_answer=correct_answer,
        options=options,
        metadata=metadata,
    )


def _response(data: Any) -> ResponseRecord:
    return ResponseRecord(response_id=10, submission_id=100, question_id=1, response_data=data)


@pytest.fixture
def grader(memory_store: InMemoryQuestionStore, test_settings: Settings) -> ResponseGrader:
    """Grader used for its storage-free grade_question."""
    return ResponseGrader(memory_store, test_settings)


@pytest.fixture
def grade(grader: ResponseGrader) -> Callable[[QuestionRecord, Any], StrategyOutcome]:
    """Grade one question against raw response data."""

    def run(question: QuestionRecord, data: Any) -> StrategyOutcome:
        return grader.grade_question(question, _response(data))

    return run


class TestStrategyRegistry:
    """Tests for StrategyRegistry."""

    def test_every_question_type_has_a_strategy(self) -> None:
        """Test that no question type is left without a strategy."""
        assert StrategyRegistry.missing() == []

    def test_build_covers_every_type(self, test_settings: Settings) -> None:
        """Test that build returns a configured strategy per type."""
        strategies = StrategyRegistry.build(test_settings)

        assert set(strategies) == set(QuestionType)

    def test_shared_strategy_is_instantiated_once(self, test_settings: Settings) -> None:
        """Test that types sharing a strategy share the instance."""
        strategies = StrategyRegistry.build(test_settings)

        assert strategies[QuestionType.ESSAY] is strategies[QuestionType.DRAG_DROP]
        assert isinstance(strategies[QuestionType.ORAL], ManualReviewStrategy)


class TestTrueFalseStrategy:
    """Tests for true/false grading."""

    def test_correct(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a matching answer earns full points."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 2, True), True)

        assert outcome.score == Decimal(2)
        assert outcome.feedback == "Correct answer"
        assert outcome.needs_manual_grading is False

    def test_incorrect(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a wrong answer earns zero."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 2, True), False)

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Incorrect answer"

    def test_string_booleans_are_coerced(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that "true"/"false" strings are read as booleans on both sides."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 1, "false"), "false")

        assert outcome.score == Decimal(1)

    def test_non_boolean_is_malformed(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that an unreadable answer is treated as malformed."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 1, True), {"value": True})

        assert outcome == StrategyOutcome(score=Decimal(0), feedback=INVALID_FORMAT_FEEDBACK)


class TestMultipleChoiceStrategy:
    """Tests for single-answer multiple choice grading."""

    def test_trimmed_match(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that surrounding whitespace is ignored."""
        question = _question(QuestionType.MULTIPLE_CHOICE, 3, "B", options=["A", "B", "C"])

        assert grade(question, " B ").score == Decimal(3)

    def test_wrong_choice(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that another option earns zero."""
        question = _question(QuestionType.MULTIPLE_CHOICE, 3, "B", options=["A", "B", "C"])
        outcome = grade(question, "C")

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Incorrect answer"

    def test_list_answer_is_malformed(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a list where a single choice is expected is malformed."""
        question = _question(QuestionType.MULTIPLE_CHOICE, 3, "B", options=["A", "B"])

        assert grade(question, ["B"]).feedback == INVALID_FORMAT_FEEDBACK


class TestMultipleAnswerStrategy:
    """Tests for select-all-that-apply grading."""

    def test_one_right_one_wrong_of_four(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test 4 options, 2 correct, 1 correct + 1 incorrect selected -> 2/4 of the points."""
        question = _question(
            QuestionType.MULTIPLE_ANSWER, 4, ["A", "C"], options=["A", "B", "C", "D"]
        )
        outcome = grade(question, ["A", "B"])

        assert outcome.score == Decimal("2.00")
        assert outcome.feedback == "Some incorrect options selected and some correct options missed"
        assert outcome.needs_manual_grading is False

    def test_all_correct(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that the exact set earns full points."""
        question = _question(
            QuestionType.MULTIPLE_ANSWER, 4, ["A", "C"], options=["A", "B", "C", "D"]
        )
        outcome = grade(question, ["C", "A"])

        assert outcome.score == Decimal(4)
        assert outcome.feedback == "All correct options selected"

    def test_missed_only(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test feedback when a correct option is missed."""
        question = _question(
            QuestionType.MULTIPLE_ANSWER, 4, ["A", "C"], options=["A", "B", "C", "D"]
        )
        outcome = grade(question, ["A"])

        assert outcome.score == Decimal("3.00")
        assert outcome.feedback == "Some correct options missed"

    def test_without_options_assumes_two_distractors(
        self, grade: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that N falls back to the number of correct choices plus two."""
        question = _question(QuestionType.MULTIPLE_ANSWER, 4, ["A", "C"])
        outcome = grade(question, ["A"])

        assert outcome.score == Decimal("3.00")

    def test_score_never_negative(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that many wrong selections floor at zero."""
        question = _question(QuestionType.MULTIPLE_ANSWER, 2, ["A"], options=["A", "B"])
        outcome = grade(question, ["B", "C", "D"])

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Some incorrect options selected and some correct options missed"

    def test_rounds_to_two_places(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that proportional scores are rounded half-up to 2 decimals."""
        question = _question(QuestionType.MULTIPLE_ANSWER, 1, ["A"], options=["A", "B", "C"])
        outcome = grade(question, ["A", "B"])

        assert outcome.score == Decimal("0.67")

    def test_empty_key_is_malformed(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a question without correct choices is malformed."""
        question = _question(QuestionType.MULTIPLE_ANSWER, 2, [], options=["A", "B"])

        assert grade(question, ["A"]).feedback == INVALID_FORMAT_FEEDBACK


class TestMatchingStrategy:
    """Tests for matching grading."""

    def test_partial_credit(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test proportional credit per correct pair."""
        question = _question(
            QuestionType.MATCHING,
            3,
            {"H2O": "water", "NaCl": "salt", "CO2": "carbon dioxide"},
            options={"left": ["H2O", "NaCl", "CO2"], "right": ["water", "salt", "carbon dioxide"]},
        )
        outcome = grade(question, {"H2O": "water", "NaCl": "carbon dioxide", "CO2": "carbon dioxide"})

        assert outcome.score == Decimal("2.00")
        assert outcome.feedback == "2 out of 3 matches correct"

    def test_unanswered_pairs(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that missing or empty pairs count as wrong."""
        question = _question(QuestionType.MATCHING, 2, {"a": "1", "b": "2"})
        outcome = grade(question, {"a": None})

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "0 out of 2 matches correct"

    def test_list_answer_is_malformed(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a non-mapping answer is malformed."""
        question = _question(QuestionType.MATCHING, 2, {"a": "1", "b": "2"})

        assert grade(question, ["1", "2"]).feedback == INVALID_FORMAT_FEEDBACK


class TestFillInBlankStrategy:
    """Tests for fill-in-the-blank grading."""

    def test_alternatives_are_case_insensitive(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test accepted ["Paris", "paris"] with answer "PARIS" is correct."""
        question = _question(
            QuestionType.FILL_IN_BLANK,
            2,
            {"capital": ["Paris", "paris"]},
            options={"blanks": [{"id": "capital", "width": 80}]},
        )
        outcome = grade(question, {"capital": "PARIS"})

        assert outcome.score == Decimal(2)
        assert outcome.feedback == "All answers correct"
        assert outcome.needs_manual_grading is False

    def test_case_sensitive(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that caseSensitive disables case folding."""
        question = _question(
            QuestionType.FILL_IN_BLANK, 2, {"capital": "Paris"}, metadata={"caseSensitive": True}
        )

        assert grade(question, {"capital": "PARIS"}).score == Decimal(0)
        assert grade(question, {"capital": " Paris "}).score == Decimal(2)

    def test_partial(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test feedback and score for some correct blanks."""
        question = _question(QuestionType.FILL_IN_BLANK, 3, {"a": "x", "b": "y", "c": "z"})
        outcome = grade(question, {"a": "x", "b": "wrong", "c": ""})

        assert outcome.score == Decimal("1.00")
        assert outcome.feedback == "1 out of 3 answers correct"

    def test_all_incorrect(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test feedback when no blank is correct."""
        question = _question(QuestionType.FILL_IN_BLANK, 2, {"a": "x"})
        outcome = grade(question, {})

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "All answers incorrect"

    def test_review_threshold(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test review when the correct ratio falls below reviewThreshold."""
        question = _question(
            QuestionType.FILL_IN_BLANK, 2, {"a": "x", "b": "y"}, metadata={"reviewThreshold": 0.6}
        )

        assert grade(question, {"a": "x", "b": "q"}).needs_manual_grading is True
        assert grade(question, {"a": "x", "b": "y"}).needs_manual_grading is False

    def test_always_review(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that alwaysReview flags even a perfect answer."""
        question = _question(
            QuestionType.FILL_IN_BLANK, 2, {"a": "x"}, metadata={"alwaysReview": True}
        )
        outcome = grade(question, {"a": "x"})

        assert outcome.score == Decimal(2)
        assert outcome.needs_manual_grading is True


class TestShortAnswerStrategy:
    """Tests for similarity-banded short answer grading."""

    @pytest.fixture
    def grade_with(
        self,
        memory_store: InMemoryQuestionStore,
        test_settings: Settings,
        fixed_similarity: Callable[[float], Callable[[str, str], float]],
    ) -> Callable[[float, QuestionRecord, Any], StrategyOutcome]:
        def run(similarity: float, question: QuestionRecord, data: Any) -> StrategyOutcome:
            grader = ResponseGrader(memory_store, test_settings, fixed_similarity(similarity))
            return grader.grade_question(question, _response(data))

        return run

    def test_at_threshold_earns_full_points(self, grade_with: Callable[..., StrategyOutcome]) -> None:
        """Test similarity 0.8 with threshold 0.8 -> full points, no review."""
        question = _question(QuestionType.SHORT_ANSWER, 4, "Mitochondria")
        outcome = grade_with(0.8, question, "mitochondrion")

        assert outcome.score == Decimal(4)
        assert outcome.feedback == "Answer matches expected response"
        assert outcome.needs_manual_grading is False

    def test_partial_band_earns_half_and_review(
        self, grade_with: Callable[..., StrategyOutcome]
    ) -> None:
        """Test similarity 0.75 with threshold 0.8 -> half points and review."""
        question = _question(QuestionType.SHORT_ANSWER, 4, "Mitochondria")
        outcome = grade_with(0.75, question, "mitochondrial")

        assert outcome.score == Decimal("2.00")
        assert outcome.feedback == "Answer partially matches expected response"
        assert outcome.needs_manual_grading is True

    def test_below_band_earns_zero_and_review(
        self, grade_with: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that similarity below 0.7 x threshold scores zero with review."""
        question = _question(QuestionType.SHORT_ANSWER, 4, "Mitochondria")
        outcome = grade_with(0.5, question, "ribosome")

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Answer does not match expected response"
        assert outcome.needs_manual_grading is True

    def test_question_threshold_overrides_default(
        self, grade_with: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that similarityThreshold from metadata is used."""
        question = _question(
            QuestionType.SHORT_ANSWER, 4, "Mitochondria", metadata={"similarityThreshold": 0.9}
        )

        assert grade_with(0.85, question, "x").needs_manual_grading is True
        assert grade_with(0.9, question, "x").score == Decimal(4)

    def test_always_review(self, grade_with: Callable[..., StrategyOutcome]) -> None:
        """Test that alwaysReview flags a fully matching answer."""
        question = _question(
            QuestionType.SHORT_ANSWER, 4, "Mitochondria", metadata={"alwaysReview": True}
        )
        outcome = grade_with(1.0, question, "Mitochondria")

        assert outcome.score == Decimal(4)
        assert outcome.needs_manual_grading is True

    def test_blank_answer_is_malformed(self, grade_with: Callable[..., StrategyOutcome]) -> None:
        """Test that a whitespace-only answer is treated as malformed."""
        question = _question(QuestionType.SHORT_ANSWER, 4, "Mitochondria")
        outcome = grade_with(1.0, question, "   ")

        assert outcome.feedback == INVALID_FORMAT_FEEDBACK
        assert outcome.needs_manual_grading is False

    def test_real_similarity(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test the default scorer end to end on an inflected answer."""
        question = _question(QuestionType.SHORT_ANSWER, 2, "running dogs")

        assert grade(question, "Run dog").score == Decimal(2)

    def test_reordered_answer_earns_full_points(
        self, grade: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that an answer restating the key in another word order is accepted."""
        question = _question(
            QuestionType.SHORT_ANSWER, 3, "Mitochondria is the powerhouse of the cell"
        )
        outcome = grade(question, "The powerhouse of the cell is the mitochondria")

        assert outcome.score == Decimal(3)
        assert outcome.feedback == "Answer matches expected response"
        assert outcome.needs_manual_grading is False


class TestComputationalStrategy:
    """Tests for computational grading."""

    @pytest.fixture
    def numeric(self) -> QuestionRecord:
        return _question(
            QuestionType.COMPUTATIONAL, 5, 10, metadata={"type": "numeric", "tolerance": 0.5}
        )

    def test_within_tolerance(
        self, grade: Callable[..., StrategyOutcome], numeric: QuestionRecord
    ) -> None:
        """Test 10 +/- 0.5: 10.4 earns full points."""
        outcome = grade(numeric, 10.4)

        assert outcome.score == Decimal(5)
        assert outcome.feedback == "Correct answer"

    def test_outside_tolerance(
        self, grade: Callable[..., StrategyOutcome], numeric: QuestionRecord
    ) -> None:
        """Test 10 +/- 0.5: 10.6 earns zero without review."""
        outcome = grade(numeric, 10.6)

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Incorrect answer"
        assert outcome.needs_manual_grading is False

    def test_tolerance_boundary_is_inclusive(
        self, grade: Callable[..., StrategyOutcome], numeric: QuestionRecord
    ) -> None:
        """Test that a difference equal to the tolerance is accepted."""
        assert grade(numeric, "9.5").score == Decimal(5)

    def test_numeric_string_answer(
        self, grade: Callable[..., StrategyOutcome], numeric: QuestionRecord
    ) -> None:
        """Test that numbers typed as text are accepted."""
        assert grade(numeric, " 10.2 ").score == Decimal(5)

    def test_review_incorrect(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that reviewIncorrect flags wrong numeric answers only."""
        question = _question(
            QuestionType.COMPUTATIONAL,
            5,
            "3.14",
            metadata={"type": "numeric", "tolerance": "0.01", "reviewIncorrect": True},
        )

        assert grade(question, 3).needs_manual_grading is True
        assert grade(question, 3.141).needs_manual_grading is False

    def test_non_numeric_answer_is_malformed(
        self, grade: Callable[..., StrategyOutcome], numeric: QuestionRecord
    ) -> None:
        """Test that text in a numeric answer is malformed."""
        assert grade(numeric, "ten").feedback == INVALID_FORMAT_FEEDBACK

    def test_formula_needs_review(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that formula questions go to a human."""
        question = _question(QuestionType.COMPUTATIONAL, 5, "x^2", metadata={"type": "formula"})
        outcome = grade(question, "x*x")

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "Formula evaluation requires manual grading"
        assert outcome.needs_manual_grading is True

    def test_other_kind_needs_review(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that computational questions without a kind go to a human."""
        outcome = grade(_question(QuestionType.COMPUTATIONAL, 5, 42), {"work": "..."})

        assert outcome.feedback == "This computational question requires manual grading"
        assert outcome.needs_manual_grading is True


class TestManualStrategies:
    """Tests for question types that always defer to a human."""

    @pytest.mark.parametrize(
        "question_type",
        [QuestionType.ESSAY, QuestionType.DIAGRAM, QuestionType.ORAL, QuestionType.DRAG_DROP],
    )
    def test_manual_types(
        self, grade: Callable[..., StrategyOutcome], question_type: QuestionType
    ) -> None:
        """Test that manual types score zero and need review."""
        outcome = grade(_question(question_type, 10), "anything")

        assert outcome.score == Decimal(0)
        assert outcome.feedback == "This question type requires manual grading"
        assert outcome.needs_manual_grading is True

    def test_coding(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test coding feedback."""
        outcome = grade(_question(QuestionType.CODING, 10), "print('hi')")

        assert outcome.feedback == "Code evaluation requires manual grading or test case execution"
        assert outcome.needs_manual_grading is True


class TestGradeQuestion:
    """Tests for the checks ResponseGrader applies before any strategy."""

    def test_missing_response(self, grader: ResponseGrader) -> None:
        """Test that an unanswered question scores zero without review."""
        outcome = grader.grade_question(_question(QuestionType.ESSAY, 5), None)

        assert outcome == StrategyOutcome(score=Decimal(0), feedback=NO_RESPONSE_FEEDBACK)

    def test_null_response_data(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a response row without data counts as unanswered."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 1, True), None)

        assert outcome.feedback == NO_RESPONSE_FEEDBACK

    def test_requires_manual_grading_overrides_type(
        self, grade: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that requiresManualGrading defers even an auto-gradable type."""
        question = _question(
            QuestionType.TRUE_FALSE, 1, True, metadata={"requiresManualGrading": True}
        )
        outcome = grade(question, True)

        assert outcome == StrategyOutcome(
            score=Decimal(0), feedback=MANUAL_REVIEW_FEEDBACK, needs_manual_grading=True
        )

    def test_unknown_type_is_malformed(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a question type outside the enumeration is malformed."""
        outcome = grade(_question("hotspot", 1, "x"), "x")

        assert outcome.feedback == INVALID_FORMAT_FEEDBACK

    def test_malformed_metadata(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that metadata of the wrong shape is malformed."""
        question = _question(QuestionType.TRUE_FALSE, 1, True, metadata=["not", "a", "map"])

        assert grade(question, True).feedback == INVALID_FORMAT_FEEDBACK

    def test_non_positive_points_are_malformed(
        self, grade: Callable[..., StrategyOutcome]
    ) -> None:
        """Test that a question worth no points is malformed."""
        assert grade(_question(QuestionType.TRUE_FALSE, 0, True), True).feedback == (
            INVALID_FORMAT_FEEDBACK
        )

    def test_null_hints_use_defaults(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that grading hints stored as null behave as if absent."""
        blank = _question(
            QuestionType.FILL_IN_BLANK,
            2,
            {"1": "Paris"},
            metadata={"caseSensitive": None, "alwaysReview": None, "requiresManualGrading": None},
        )
        numeric = _question(
            QuestionType.COMPUTATIONAL,
            5,
            10,
            metadata={"type": "numeric", "tolerance": None, "reviewIncorrect": None},
        )

        assert grade(blank, {"1": "paris"}) == StrategyOutcome(
            score=Decimal(2), feedback="All answers correct"
        )
        assert grade(numeric, 10).score == Decimal(5)
        assert grade(numeric, 10.1) == StrategyOutcome(
            score=Decimal(0), feedback="Incorrect answer"
        )

    def test_outcome_is_immutable(self, grade: Callable[..., StrategyOutcome]) -> None:
        """Test that a graded outcome cannot be altered after the fact."""
        outcome = grade(_question(QuestionType.TRUE_FALSE, 1, True), True)

        with pytest.raises(ValidationError):
            outcome.score = Decimal(0)  # type: ignore[misc]
