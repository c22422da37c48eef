"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

from decimal import Decimal
from pathlib import Path
from typing import Callable, Generator, NamedTuple

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from autograder.config import Settings, get_settings
from autograder.models import SubmissionStatus
from autograder.store.memory import InMemoryQuestionStore
from autograder.store.sql import SqlQuestionStore, create_store_engine
from autograder.store.tables import (
    Assignment,
    AssignmentCategory,
    Course,
    CourseGradingScale,
    Enrollment,
    GradingScale,
    GradingScaleThreshold,
    Question,
    QuestionResponse,
    QuestionTypeRow,
    Submission,
)

STUDENT_ID = 7
COURSE_ID = 1


class SeededCourse(NamedTuple):
    """Identifiers of the sample course: Homework 40% (10/10, 8/10), Exams 60% (45/50)."""

    course_id: int
    student_id: int
    homework_id: int
    exams_id: int
    homework_1: int
    homework_2: int
    midterm: int


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Make every test read its own settings."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with default grading values."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        default_similarity_threshold=0.8,
        partial_credit_band=0.7,
        partial_credit_factor=0.5,
        score_decimal_places=2,
        log_level="DEBUG",
    )


@pytest.fixture
def fixed_similarity() -> Callable[[float], Callable[[str, str], float]]:
    """Build a similarity function that always returns the given value."""

    def build(value: float) -> Callable[[str, str], float]:
        def similarity(text_a: str, text_b: str) -> float:
            return value

        return similarity

    return build


# ==============================================================================
# In-Memory Store Fixtures
# ==============================================================================


@pytest.fixture
def memory_store() -> InMemoryQuestionStore:
    """Create an empty in-memory Question Store."""
    return InMemoryQuestionStore()


@pytest.fixture
def course_store(
    memory_store: InMemoryQuestionStore,
) -> tuple[InMemoryQuestionStore, SeededCourse]:
    """In-memory store holding the sample course with graded submissions."""
    store = memory_store
    homework = store.add_category(COURSE_ID, "Homework", 40)
    exams = store.add_category(COURSE_ID, "Exams", 60)

    hw1 = store.add_assignment(COURSE_ID, homework, "Homework 1", 10)
    hw2 = store.add_assignment(COURSE_ID, homework, "Homework 2", 10)
    midterm = store.add_assignment(COURSE_ID, exams, "Midterm", 50)

    for assignment_id, total in ((hw1, 10), (hw2, 8), (midterm, 45)):
        store.add_submission(
            assignment_id, STUDENT_ID, status=SubmissionStatus.GRADED, total_score=total
        )

    store.enroll(STUDENT_ID, COURSE_ID)
    store.set_grading_scale(
        COURSE_ID,
        [("A", 90, 100), ("B", 80, "89.99"), ("C", 70, "79.99"), ("F", 0, "69.99")],
    )

    return store, SeededCourse(COURSE_ID, STUDENT_ID, homework, exams, hw1, hw2, midterm)


# ==============================================================================
# SQL Store Fixtures
# ==============================================================================


def _type_ids(session: Session) -> dict[str, int]:
    return {row.name: row.type_id for row in session.scalars(select(QuestionTypeRow))}


def seed_sql_course(store: SqlQuestionStore) -> dict[str, int]:
    """
    Insert the sample course plus a quiz with one ungraded submission.

    Returns the identifiers the tests refer to.
    """
    with store.session() as session:
        types = _type_ids(session)

        course = Course(course_code="CS101", title="Intro to Computing")
        session.add(course)
        session.flush()

        session.add(Enrollment(course_id=course.course_id, student_id=STUDENT_ID))

        homework = AssignmentCategory(
            course_id=course.course_id, name="Homework", weight=Decimal(40)
        )
        exams = AssignmentCategory(course_id=course.course_id, name="Exams", weight=Decimal(60))
        quizzes = AssignmentCategory(course_id=course.course_id, name="Quizzes", weight=Decimal(0))
        session.add_all([homework, exams, quizzes])
        session.flush()

        def assignment(
            category: AssignmentCategory, title: str, points: int, published: bool = True
        ) -> Assignment:
            row = Assignment(
                course_id=course.course_id,
                category_id=category.category_id,
                title=title,
                total_points=points,
                is_published=published,
            )
            session.add(row)
            session.flush()
            return row

        hw1 = assignment(homework, "Homework 1", 10)
        hw2 = assignment(homework, "Homework 2", 10)
        midterm = assignment(exams, "Midterm", 50)
        assignment(exams, "Unpublished Final", 100, published=False)
        quiz = assignment(quizzes, "Quiz 1", 6)

        for row, total in ((hw1, 10), (hw2, 8), (midterm, 45)):
            session.add(
                Submission(
                    assignment_id=row.assignment_id,
                    student_id=STUDENT_ID,
                    status="graded",
                    total_score=Decimal(total),
                )
            )

        true_false = Question(
            assignment_id=quiz.assignment_id,
            type_id=types["true_false"],
            content="The sky is blue.",
            points=2,
            correct_answer=True,
            order_num=1,
        )
        essay = Question(
            assignment_id=quiz.assignment_id,
            type_id=types["essay"],
            content="Explain why.",
            points=4,
            question_metadata={"rubric": "free form"},
            order_num=2,
        )
        session.add_all([true_false, essay])
        session.flush()

        submission = Submission(
            assignment_id=quiz.assignment_id, student_id=STUDENT_ID, status="submitted"
        )
        session.add(submission)
        session.flush()

        tf_response = QuestionResponse(
            submission_id=submission.submission_id,
            question_id=true_false.question_id,
            response_data=True,
        )
        essay_response = QuestionResponse(
            submission_id=submission.submission_id,
            question_id=essay.question_id,
            response_data="Because of Rayleigh scattering.",
        )
        session.add_all([tf_response, essay_response])

        scale = GradingScale(name="Standard", is_default=True)
        scale.thresholds = [
            GradingScaleThreshold(grade="A", min_score=Decimal(90), max_score=Decimal(100)),
            GradingScaleThreshold(grade="B", min_score=Decimal(80), max_score=Decimal("89.99")),
            GradingScaleThreshold(grade="F", min_score=Decimal(0), max_score=Decimal("79.99")),
        ]
        session.add(scale)
        session.flush()
        session.add(CourseGradingScale(course_id=course.course_id, scale_id=scale.scale_id))
        session.flush()

        return {
            "course_id": course.course_id,
            "student_id": STUDENT_ID,
            "quiz_id": quiz.assignment_id,
            "submission_id": submission.submission_id,
            "tf_response_id": tf_response.response_id,
            "essay_response_id": essay_response.response_id,
        }


@pytest.fixture
def sql_store() -> Generator[SqlQuestionStore, None, None]:
    """SQL Question Store on a private in-memory SQLite database."""
    store = SqlQuestionStore(create_store_engine("sqlite://"))
    store.create_schema()
    yield store
    store.engine.dispose()


@pytest.fixture
def sql_course(sql_store: SqlQuestionStore) -> dict[str, int]:
    """Sample course seeded into the SQL store."""
    return seed_sql_course(sql_store)


@pytest.fixture
def database_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[str, dict[str, int]]:
    """Seeded SQLite file configured as the CLI's Question Store."""
    url = f"sqlite:///{tmp_path / 'autograder.db'}"
    store = SqlQuestionStore(create_store_engine(url))
    store.create_schema()
    ids = seed_sql_course(store)
    store.engine.dispose()

    monkeypatch.setenv("AUTOGRADER_DATABASE_URL", url)
    monkeypatch.setenv("AUTOGRADER_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    return url, ids
