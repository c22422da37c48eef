"""
SQL Question Store backed by SQLAlchemy.

Each transaction runs in its own session and commits on success. The
submission row is read with ``SELECT ... FOR UPDATE`` when the grader asks
for a lock, so concurrent grading of one submission is serialized by the
database. Any SQLAlchemy error is logged, rolled back and re-raised as
StorageError.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from autograder.config import Settings, get_settings
from autograder.errors import NotFoundError, StorageError
from autograder.models import (
    AssignmentRecord,
    CategoryRecord,
    GradeThreshold,
    QuestionRecord,
    QuestionSlot,
    ResponseRecord,
    SubmissionRecord,
)
from autograder.store.base import QuestionStore, StoreTransaction
from autograder.store.tables import (
    STANDARD_QUESTION_TYPES,
    AssignmentCategory,
    Base,
    CourseGradingScale,
    Enrollment,
    GradingScaleThreshold,
    Question,
    QuestionResponse,
    QuestionTypeRow,
    Submission,
)
from autograder.store.tables import Assignment as AssignmentRow

logger = logging.getLogger(__name__)


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the Question Store.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            """Enforce foreign keys on SQLite."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True, pool_recycle=3600)


class SqlQuestionStore(QuestionStore):
    """Question Store over a relational database."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SqlQuestionStore":
        """Build a store from configuration."""
        settings = settings or get_settings()
        return cls(create_store_engine(settings.database_url, echo=settings.sql_echo))

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        session = self._session_factory()
        try:
            with session.begin():
                yield _SqlTransaction(session)
        except SQLAlchemyError as e:
            logger.error("Question Store transaction failed: %s", e)
            raise StorageError("Question Store operation failed", cause=e) from e
        finally:
            session.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Open a plain session for seeding or inspection.

        Commits on success and rolls back on error.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error("Database error: %s", e)
            session.rollback()
            raise StorageError("Question Store operation failed", cause=e) from e
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables and seed the standard question types."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.error("Error creating tables: %s", e)
            raise StorageError("Could not create the Question Store schema", cause=e) from e

        with self.session() as session:
            existing = set(session.scalars(select(QuestionTypeRow.name)))
            for question_type, description, grading_method in STANDARD_QUESTION_TYPES:
                if question_type.value not in existing:
                    session.add(
                        QuestionTypeRow(
                            name=question_type.value,
                            description=description,
                            grading_method=grading_method,
                        )
                    )
        logger.info("Question Store schema ready")

    def check_connection(self) -> bool:
        """Check if the database is reachable."""
        try:
            with self._engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return True
        except SQLAlchemyError as e:
            logger.error("Database connection failed: %s", e)
            return False


class _SqlTransaction(StoreTransaction):
    """Store operations bound to one SQLAlchemy session transaction."""

    def __init__(self, session: Session):
        self._session = session

    def get_submission(self, submission_id: int, for_update: bool = False) -> SubmissionRecord:
        stmt = select(Submission).where(Submission.submission_id == submission_id)
        if for_update:
            stmt = stmt.with_for_update()
        submission = self._session.scalars(stmt).one_or_none()
        if submission is None:
            raise NotFoundError("Submission", submission_id)

        return SubmissionRecord(
            submission_id=submission.submission_id,
            assignment_id=submission.assignment_id,
            student_id=submission.student_id,
            status=submission.status,
            max_points=submission.assignment.total_points,
            total_score=submission.total_score,
            graded_at=submission.graded_at,
            graded_by=submission.graded_by,
        )

    def get_response(self, response_id: int) -> ResponseRecord:
        response = self._session.get(QuestionResponse, response_id)
        if response is None:
            raise NotFoundError("Response", response_id)
        return self._to_record(response)

    def list_questions_with_responses(
        self, assignment_id: int, submission_id: int
    ) -> list[QuestionSlot]:
        stmt = (
            select(Question, QuestionResponse)
            .options(selectinload(Question.question_type))
            .outerjoin(
                QuestionResponse,
                (QuestionResponse.question_id == Question.question_id)
                & (QuestionResponse.submission_id == submission_id),
            )
            .where(Question.assignment_id == assignment_id)
            .order_by(Question.order_num, Question.question_id)
        )

        slots: list[QuestionSlot] = []
        for question, response in self._session.execute(stmt):
            record = QuestionRecord(
                question_id=question.question_id,
                question_type=question.question_type.name,
                points=question.points,
                options=question.options,
                correct_answer=question.correct_answer,
                metadata=question.question_metadata,
                order_num=question.order_num or 0,
            )
            slots.append(QuestionSlot(record, self._to_record(response) if response else None))
        return slots

    def write_response_score(
        self,
        response_id: int,
        score: Decimal,
        feedback: str,
        graded_at: datetime,
        graded_by: int | None,
    ) -> None:
        response = self._session.get(QuestionResponse, response_id)
        if response is None:
            raise NotFoundError("Response", response_id)
        response.score = score
        response.feedback = feedback
        response.graded_at = graded_at
        response.graded_by = graded_by
        self._session.flush()

    def finalize_submission(
        self,
        submission_id: int,
        total_score: Decimal,
        graded_at: datetime,
        graded_by: int | None = None,
    ) -> None:
        submission = self._session.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        submission.status = "graded"
        submission.total_score = total_score
        submission.graded_at = graded_at
        submission.graded_by = graded_by
        self._session.flush()

    def list_categories_and_assignments(self, course_id: int) -> list[CategoryRecord]:
        stmt = (
            select(AssignmentCategory)
            .options(selectinload(AssignmentCategory.assignments))
            .where(AssignmentCategory.course_id == course_id)
            .order_by(AssignmentCategory.category_id)
        )

        categories: list[CategoryRecord] = []
        for category in self._session.scalars(stmt):
            assignments = tuple(
                AssignmentRecord(
                    assignment_id=a.assignment_id,
                    category_id=category.category_id,
                    title=a.title,
                    total_points=a.total_points,
                )
                for a in category.assignments
                if a.is_published
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
        ids = list(assignment_ids)
        if not ids:
            return {}

        stmt = select(Submission.assignment_id, Submission.total_score).where(
            Submission.student_id == student_id,
            Submission.assignment_id.in_(ids),
            Submission.status == "graded",
            Submission.total_score.is_not(None),
        )
        return {assignment_id: total for assignment_id, total in self._session.execute(stmt)}

    def get_grading_scale(self, course_id: int) -> list[GradeThreshold] | None:
        stmt = (
            select(GradingScaleThreshold)
            .join(CourseGradingScale, CourseGradingScale.scale_id == GradingScaleThreshold.scale_id)
            .where(CourseGradingScale.course_id == course_id)
            .order_by(GradingScaleThreshold.min_score.desc())
        )
        thresholds = [
            GradeThreshold(grade=t.grade, min_score=t.min_score, max_score=t.max_score)
            for t in self._session.scalars(stmt)
        ]
        return thresholds or None

    def write_final_grade(self, student_id: int, course_id: int, final_grade: Decimal) -> None:
        stmt = select(Enrollment).where(
            Enrollment.student_id == student_id, Enrollment.course_id == course_id
        )
        enrollment = self._session.scalars(stmt).one_or_none()
        if enrollment is None:
            raise NotFoundError("Enrollment", f"student {student_id} in course {course_id}")
        enrollment.final_grade = final_grade
        self._session.flush()

    @staticmethod
    def _to_record(response: QuestionResponse) -> ResponseRecord:
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
