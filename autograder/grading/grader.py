"""
Response grader - the submission-level orchestrator.

Dispatches every question/response pair of a submission to the strategy of
its question type, persists the automated scores and finalizes the
submission when no question is left for a human. Also records manual scores
and finalizes a submission once its last pending question is graded.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from autograder.config import Settings, get_settings
from autograder.errors import AlreadyGradedError, InvalidInputError, MalformedAnswerError
from autograder.grading.schemas import parse_metadata, parse_question
from autograder.grading.similarity import SimilarityFunction
from autograder.grading.strategies import StrategyOutcome, StrategyRegistry
from autograder.models import (
    ManualGradeReport,
    QuestionGradingResult,
    QuestionRecord,
    ResponseRecord,
    SubmissionGradingReport,
    round_score,
    to_decimal,
)
from autograder.store.base import QuestionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time without tzinfo, as stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ResponseGrader:
    """
    Grades submissions question by question.

    Holds no state besides its configuration; every call works inside its
    own Question Store transaction.
    """

    def __init__(
        self,
        store: QuestionStore,
        settings: Settings | None = None,
        similarity: SimilarityFunction | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the grader.

        Args:
            store: Question Store to read from and write to.
            settings: Configuration settings. Uses global settings if not provided.
            similarity: Override of the short-answer similarity function.
            clock: Source of grading timestamps.
        """
        self._store = store
        self._settings = settings or get_settings()
        self._strategies = StrategyRegistry.build(self._settings, similarity)
        self._clock = clock

    def grade_question(
        self, question: QuestionRecord, response: ResponseRecord | None
    ) -> StrategyOutcome:
        """
        Grade one question without touching storage.

        A missing answer is not ambiguous and never needs review. A question
        flagged ``requiresManualGrading`` goes to a human whatever its type.
        Malformed payloads score zero and never stop the rest of the grading.

        Args:
            question: The stored question.
            response: The student's response, or None when unanswered.

        Returns:
            StrategyOutcome for the question.
        """
        if response is None or response.response_data is None:
            return StrategyOutcome.no_response()

        try:
            metadata = parse_metadata(question)
            if metadata.requires_manual_grading:
                return StrategyOutcome.manual()

            typed_question = parse_question(question)
            strategy = self._strategies[typed_question.kind]
            return strategy.evaluate(typed_question, response.response_data)
        except MalformedAnswerError as e:
            logger.warning("Treating question %s as wrong: %s", question.question_id, e)
            return StrategyOutcome.invalid_format()

    def grade_submission(self, submission_id: int | None) -> SubmissionGradingReport:
        """
        Automatically grade every question of a submission.

        Scores of questions that need no review are written back; when no
        question needs review the submission is finalized with the summed
        score. Everything commits as one transaction.

        Args:
            submission_id: Submission to grade.

        Returns:
            SubmissionGradingReport with per-question results.

        Raises:
            InvalidInputError: If no submission id is given.
            NotFoundError: If the submission does not exist.
            AlreadyGradedError: If the submission is already finalized.
            StorageError: If the Question Store fails.
        """
        if submission_id is None:
            raise InvalidInputError("Submission ID is required")

        logger.info("Grading submission %s", submission_id)

        with self._store.transaction() as tx:
            submission = tx.get_submission(submission_id, for_update=True)
            if submission.is_graded:
                raise AlreadyGradedError(submission_id)

            slots = tx.list_questions_with_responses(submission.assignment_id, submission_id)
            graded_at = self._clock()

            total_score = Decimal(0)
            results: list[QuestionGradingResult] = []

            for question, response in slots:
                outcome = self.grade_question(question, response)
                response_id = response.response_id if response else None

                if outcome.needs_manual_grading:
                    logger.info(
                        "Question %s of submission %s needs manual grading",
                        question.question_id,
                        submission_id,
                    )
                else:
                    if response_id is not None:
                        tx.write_response_score(
                            response_id, outcome.score, outcome.feedback, graded_at, None
                        )
                    total_score += outcome.score

                results.append(
                    QuestionGradingResult(
                        question_id=question.question_id,
                        response_id=response_id,
                        score=outcome.score,
                        feedback=outcome.feedback,
                        needs_manual_grading=outcome.needs_manual_grading,
                    )
                )

            needs_manual_grading = any(r.needs_manual_grading for r in results)
            if not needs_manual_grading:
                tx.finalize_submission(submission_id, total_score, graded_at)
                logger.info(
                    "Submission %s finalized with %s/%s",
                    submission_id,
                    total_score,
                    submission.max_points,
                )

        return SubmissionGradingReport(
            submission_id=submission_id,
            total_score=total_score,
            max_points=submission.max_points,
            needs_manual_grading=needs_manual_grading,
            grading_results=tuple(results),
        )

    def manual_grade_question(
        self,
        response_id: int | None,
        score: Any,
        feedback: str | None = None,
        grader_id: int | None = None,
    ) -> ManualGradeReport:
        """
        Record a human-assigned score for one response.

        Once every answered question of the submission has a score, the
        submission is finalized with the sum of all scores and the human
        grader recorded as its grader.

        Args:
            response_id: Response being graded.
            score: Points awarded; must not be negative.
            feedback: Optional feedback for the student.
            grader_id: Id of the human grader.

        Returns:
            ManualGradeReport telling whether the submission was finalized.

        Raises:
            InvalidInputError: If the response id or score is missing or invalid.
            NotFoundError: If the response or its submission does not exist.
            StorageError: If the Question Store fails.
        """
        if response_id is None or score is None:
            raise InvalidInputError("Response ID and score are required")
        try:
            awarded = to_decimal(score)
        except (ArithmeticError, ValueError) as e:
            raise InvalidInputError(f"Score is not a number: {score!r}") from e
        if not awarded.is_finite() or awarded < 0:
            raise InvalidInputError(f"Score must be a non-negative number: {score!r}")
        awarded = round_score(awarded, self._settings.score_decimal_places)

        with self._store.transaction() as tx:
            response = tx.get_response(response_id)
            submission = tx.get_submission(response.submission_id, for_update=True)
            graded_at = self._clock()

            tx.write_response_score(response_id, awarded, feedback or "", graded_at, grader_id)
            logger.info(
                "Response %s manually graded %s by grader %s", response_id, awarded, grader_id
            )

            # Unanswered questions were settled as "No response provided"
            answered = [
                r
                for _, r in tx.list_questions_with_responses(
                    submission.assignment_id, submission.submission_id
                )
                if r is not None
            ]
            finalized = all(r.score is not None for r in answered)
            total_score: Decimal | None = None

            if finalized:
                total_score = sum((r.score for r in answered if r.score is not None), Decimal(0))
                tx.finalize_submission(submission.submission_id, total_score, graded_at, grader_id)
                logger.info(
                    "Submission %s finalized by grader %s with %s",
                    submission.submission_id,
                    grader_id,
                    total_score,
                )

        return ManualGradeReport(
            response_id=response_id,
            submission_id=submission.submission_id,
            score=awarded,
            submission_finalized=finalized,
            total_score=total_score,
        )
