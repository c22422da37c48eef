"""
Question Store interface.

The grading engine never talks to a database directly. It receives a
QuestionStore, opens a transaction for each operation and works through the
StoreTransaction it yields. Everything done inside one transaction commits
together or not at all, and the submission row fetched with
``for_update=True`` stays locked until the transaction ends.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from autograder.models import (
    CategoryRecord,
    GradeThreshold,
    QuestionSlot,
    ResponseRecord,
    SubmissionRecord,
)


class StoreTransaction(ABC):
    """Operations available inside one Question Store transaction."""

    @abstractmethod
    def get_submission(self, submission_id: int, for_update: bool = False) -> SubmissionRecord:
        """
        Fetch a submission with its assignment's point total.

        Args:
            submission_id: Submission to fetch.
            for_update: Lock the submission until the transaction ends.

        Raises:
            NotFoundError: If the submission does not exist.
        """
        ...

    @abstractmethod
    def get_response(self, response_id: int) -> ResponseRecord:
        """
        Fetch one response.

        Raises:
            NotFoundError: If the response does not exist.
        """
        ...

    @abstractmethod
    def list_questions_with_responses(
        self, assignment_id: int, submission_id: int
    ) -> list[QuestionSlot]:
        """List the assignment's questions by order_num, each with the submission's response."""
        ...

    @abstractmethod
    def write_response_score(
        self,
        response_id: int,
        score: Decimal,
        feedback: str,
        graded_at: datetime,
        graded_by: int | None,
    ) -> None:
        """Record the score and feedback of one response."""
        ...

    @abstractmethod
    def finalize_submission(
        self,
        submission_id: int,
        total_score: Decimal,
        graded_at: datetime,
        graded_by: int | None = None,
    ) -> None:
        """Mark a submission graded with its total score."""
        ...

    @abstractmethod
    def list_categories_and_assignments(self, course_id: int) -> list[CategoryRecord]:
        """List the course's categories, each with its published assignments."""
        ...

    @abstractmethod
    def list_graded_submission_totals(
        self, student_id: int, assignment_ids: Iterable[int]
    ) -> dict[int, Decimal]:
        """Map assignment id to the student's total score for graded submissions only."""
        ...

    @abstractmethod
    def get_grading_scale(self, course_id: int) -> list[GradeThreshold] | None:
        """Return the thresholds of the course's grading scale, or None when unset."""
        ...

    @abstractmethod
    def write_final_grade(self, student_id: int, course_id: int, final_grade: Decimal) -> None:
        """
        Persist the final grade on the student's enrollment.

        Raises:
            NotFoundError: If the student is not enrolled in the course.
        """
        ...


class QuestionStore(ABC):
    """Factory of transactions against the platform's persisted records."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        """
        Open a transaction.

        Commits when the block exits normally and rolls back when it raises.

        Raises:
            StorageError: If the underlying storage fails.
        """
        ...
