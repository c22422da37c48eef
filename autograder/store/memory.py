"""
In-memory Question Store.

Used by the test suite and for local experiments. Transactions are
serialized by a single re-entrant lock, which also serializes any two
grading calls against the same submission. A transaction that raises
restores the snapshot taken when it began.
"""

import copy
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from pydantic import BaseModel, Field

from autograder.errors import NotFoundError
from autograder.models import (
    AssignmentRecord,
    CategoryRecord,
    GradeThreshold,
    QuestionRecord,
    QuestionSlot,
    QuestionType,
    ResponseRecord,
    SubmissionRecord,
    SubmissionStatus,
    to_decimal,
)
from autograder.store.base import QuestionStore, StoreTransaction

logger = logging.getLogger(__name__)


class _Category(BaseModel):
    category_id: int
    course_id: int
    name: str
    weight: Decimal


class _Assignment(BaseModel):
    assignment_id: int
    course_id: int
    category_id: int | None
    title: str
    total_points: int
    is_published: bool = True


class _Question(BaseModel):
    assignment_id: int
    record: QuestionRecord


class _Submission(BaseModel):
    submission_id: int
    assignment_id: int
    student_id: int
    status: SubmissionStatus
    total_score: Decimal | None = None
    graded_at: datetime | None = None
    graded_by: int | None = None


class _Response(BaseModel):
    response_id: int
    submission_id: int
    question_id: int
    response_data: Any
    score: Decimal | None = None
    feedback: str | None = None
    graded_at: datetime | None = None
    graded_by: int | None = None


class _State(BaseModel):
    categories: dict[int, _Category] = Field(default_factory=dict)
    assignments: dict[int, _Assignment] = Field(default_factory=dict)
    questions: dict[int, _Question] = Field(default_factory=dict)
    submissions: dict[int, _Submission] = Field(default_factory=dict)
    responses: dict[int, _Response] = Field(default_factory=dict)
    enrollments: dict[tuple[int, int], Decimal | None] = Field(default_factory=dict)
    scales: dict[int, list[GradeThreshold]] = Field(default_factory=dict)
    next_id: int = 1


class InMemoryQuestionStore(QuestionStore):
    """Question Store kept in process memory, with seeding helpers."""

    def __init__(self) -> None:
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield _InMemoryTransaction(self._state)
            except BaseException:
                logger.debug("Rolling back in-memory transaction")
                self._state = snapshot
                raise

    # ==========================================================================
    # Seeding helpers (authoring and submission flows live elsewhere)
    # ==========================================================================

    def _new_id(self) -> int:
        new_id = self._state.next_id
        self._state.next_id += 1
        return new_id

    def add_category(self, course_id: int, name: str, weight: Any) -> int:
        """Create an assignment category and return its id."""
        with self._lock:
            category_id = self._new_id()
            self._state.categories[category_id] = _Category(
                category_id=category_id, course_id=course_id, name=name, weight=to_decimal(weight)
            )
            return category_id

    def add_assignment(
        self,
        course_id: int,
        category_id: int | None,
        title: str,
        total_points: int,
        is_published: bool = True,
    ) -> int:
        """Create an assignment and return its id."""
        with self._lock:
            assignment_id = self._new_id()
            self._state.assignments[assignment_id] = _Assignment(
                assignment_id=assignment_id,
                course_id=course_id,
                category_id=category_id,
                title=title,
                total_points=total_points,
                is_published=is_published,
            )
            return assignment_id

    def add_question(
        self,
        assignment_id: int,
        question_type: QuestionType | str,
        points: int,
        correct_answer: Any = None,
        options: Any = None,
        metadata: dict[str, Any] | None = None,
        order_num: int | None = None,
    ) -> int:
        """Create a question, appended after the assignment's last one by default."""
        with self._lock:
            question_id = self._new_id()
            if order_num is None:
                existing = [
                    q.record.order_num
                    for q in self._state.questions.values()
                    if q.assignment_id == assignment_id
                ]
                order_num = max(existing, default=0) + 1
            type_name = (
                question_type.value if isinstance(question_type, QuestionType) else question_type
            )
            record = QuestionRecord(
                question_id=question_id,
                question_type=type_name,
                points=points,
                options=options,
                correct_answer=correct_answer,
                metadata=metadata or {},
                order_num=order_num,
            )
            self._state.questions[question_id] = _Question(
                assignment_id=assignment_id, record=record
            )
            return question_id

    def add_submission(
        self,
        assignment_id: int,
        student_id: int,
        status: SubmissionStatus = SubmissionStatus.SUBMITTED,
        total_score: Any = None,
    ) -> int:
        """Create a submission and return its id."""
        with self._lock:
            submission_id = self._new_id()
            self._state.submissions[submission_id] = _Submission(
                submission_id=submission_id,
                assignment_id=assignment_id,
                student_id=student_id,
                status=status,
                total_score=None if total_score is None else to_decimal(total_score),
            )
            return submission_id

    def add_response(self, submission_id: int, question_id: int, response_data: Any) -> int:
        """Record a student's answer; at most one per (submission, question)."""
        with self._lock:
            for response in self._state.responses.values():
                if response.submission_id == submission_id and response.question_id == question_id:
                    raise ValueError(
                        f"Submission {submission_id} already answers question {question_id}"
                    )
            response_id = self._new_id()
            self._state.responses[response_id] = _Response(
                response_id=response_id,
                submission_id=submission_id,
                question_id=question_id,
                response_data=response_data,
            )
            return response_id

    def enroll(self, student_id: int, course_id: int) -> None:
        """Enroll a student in a course."""
        with self._lock:
            self._state.enrollments.setdefault((student_id, course_id), None)

    def set_grading_scale(self, course_id: int, thresholds: Iterable[tuple[str, Any, Any]]) -> None:
        """Attach a grading scale given as (grade, min, max) tuples."""
        with self._lock:
            self._state.scales[course_id] = [
                GradeThreshold(grade=grade, min_score=low, max_score=high)
                for grade, low, high in thresholds
            ]

    # ==========================================================================
    # Inspection helpers
    # ==========================================================================

    def final_grade(self, student_id: int, course_id: int) -> Decimal | None:
        """Return the persisted final grade of an enrollment."""
        with self._lock:
            return self._state.enrollments[(student_id, course_id)]

    def submission(self, submission_id: int) -> SubmissionRecord:
        """Return the current state of a submission."""
        with self.transaction() as tx:
            return tx.get_submission(submission_id)

    def response(self, response_id: int) -> ResponseRecord:
        """Return the current state of a response."""
        with self.transaction() as tx:
            return tx.get_response(response_id)


class _InMemoryTransaction(StoreTransaction):
    """Transaction view over the live in-memory state."""

    def __init__(self, state: _State):
        self._state = state

    def get_submission(self, submission_id: int, for_update: bool = False) -> SubmissionRecord:
        submission = self._state.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        assignment = self._state.assignments.get(submission.assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", submission.assignment_id)

        return SubmissionRecord(
            submission_id=submission.submission_id,
            assignment_id=submission.assignment_id,
            student_id=submission.student_id,
            status=submission.status,
            max_points=assignment.total_points,
            total_score=submission.total_score,
            graded_at=submission.graded_at,
            graded_by=submission.graded_by,
        )

    def get_response(self, response_id: int) -> ResponseRecord:
        response = self._state.responses.get(response_id)
        if response is None:
            raise NotFoundError("Response", response_id)
        return self._to_record(response)

    def list_questions_with_responses(
        self, assignment_id: int, submission_id: int
    ) -> list[QuestionSlot]:
        by_question = {
            r.question_id: r
            for r in self._state.responses.values()
            if r.submission_id == submission_id
        }
        questions = sorted(
            (q.record for q in self._state.questions.values() if q.assignment_id == assignment_id),
            key=lambda q: (q.order_num, q.question_id),
        )

        slots: list[QuestionSlot] = []
        for question in questions:
            response = by_question.get(question.question_id)
            slots.append(QuestionSlot(question, self._to_record(response) if response else None))
        return slots

    def write_response_score(
        self,
        response_id: int,
        score: Decimal,
        feedback: str,
        graded_at: datetime,
        graded_by: int | None,
    ) -> None:
        response = self._state.responses.get(response_id)
        if response is None:
            raise NotFoundError("Response", response_id)
        response.score = score
        response.feedback = feedback
        response.graded_at = graded_at
        response.graded_by = graded_by

    def finalize_submission(
        self,
        submission_id: int,
        total_score: Decimal,
        graded_at: datetime,
        graded_by: int | None = None,
    ) -> None:
        submission = self._state.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        submission.status = SubmissionStatus.GRADED
        submission.total_score = total_score
        submission.graded_at = graded_at
        submission.graded_by = graded_by

    def list_categories_and_assignments(self, course_id: int) -> list[CategoryRecord]:
        categories: list[CategoryRecord] = []
        for category in self._state.categories.values():
            if category.course_id != course_id:
                continue
            assignments = tuple(
                AssignmentRecord(
                    assignment_id=a.assignment_id,
                    category_id=category.category_id,
                    title=a.title,
                    total_points=a.total_points,
                )
                for a in self._state.assignments.values()
                if a.category_id == category.category_id and a.is_published
            )
            categories.append(
                CategoryRecord(
                    category_id=category.category_id,
                    course_id=category.course_id,
                    name=category.name,
                    weight=category.weight,
                    assignments=assignments,
                )
            )
        return categories

    def list_graded_submission_totals(
        self, student_id: int, assignment_ids: Iterable[int]
    ) -> dict[int, Decimal]:
        wanted = set(assignment_ids)
        return {
            s.assignment_id: s.total_score
            for s in self._state.submissions.values()
            if s.student_id == student_id
            and s.assignment_id in wanted
            and s.status == SubmissionStatus.GRADED
            and s.total_score is not None
        }

    def get_grading_scale(self, course_id: int) -> list[GradeThreshold] | None:
        thresholds = self._state.scales.get(course_id)
        return list(thresholds) if thresholds else None

    def write_final_grade(self, student_id: int, course_id: int, final_grade: Decimal) -> None:
        key = (student_id, course_id)
        if key not in self._state.enrollments:
            raise NotFoundError("Enrollment", f"student {student_id} in course {course_id}")
        self._state.enrollments[key] = final_grade

    @staticmethod
    def _to_record(response: _Response) -> ResponseRecord:
        return ResponseRecord(
            response_id=response.response_id,
            submission_id=response.submission_id,
            question_id=response.question_id,
            response_data=response.response_data,
            score=response.score,
            feedback=response.feedback,
            graded_at=response.graded_at,
            graded_by=response.graded_by,
        )
