"""
SQLAlchemy table models for the SQL Question Store.

Only the tables the grading engine reads or writes are mapped. User and
profile tables belong to other services, so student and grader ids are plain
integers here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from autograder.models import QuestionType


class Base(DeclarativeBase):
    """Declarative base for all Question Store tables."""


class Course(Base):
    __tablename__ = "courses"

    course_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_code: Mapped[str] = mapped_column(String(20), unique=True)
    title: Mapped[str] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<Course(course_id={self.course_id}, code='{self.course_code}')>"


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("course_id", "student_id"),)

    enrollment_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.course_id", ondelete="CASCADE"))
    student_id: Mapped[int] = mapped_column(Integer, index=True)
    final_grade: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))


class AssignmentCategory(Base):
    __tablename__ = "assignment_categories"
    __table_args__ = (UniqueConstraint("course_id", "name"),)

    category_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.course_id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(50))
    # Percentage weight in the final grade
    weight: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    description: Mapped[Optional[str]] = mapped_column(Text)

    assignments: Mapped[list["Assignment"]] = relationship(
        back_populates="category", order_by="Assignment.assignment_id"
    )


class Assignment(Base):
    __tablename__ = "assignments"

    assignment_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.course_id", ondelete="CASCADE"), index=True
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("assignment_categories.category_id")
    )
    title: Mapped[str] = mapped_column(String(100))
    total_points: Mapped[int] = mapped_column(Integer)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)

    category: Mapped[Optional[AssignmentCategory]] = relationship(back_populates="assignments")


class QuestionTypeRow(Base):
    __tablename__ = "question_types"
    __table_args__ = (
        CheckConstraint("grading_method IN ('automatic', 'manual', 'hybrid')"),
    )

    type_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    grading_method: Mapped[str] = mapped_column(String(20))


# Standard question types seeded by ``SqlQuestionStore.create_schema``
STANDARD_QUESTION_TYPES: tuple[tuple[QuestionType, str, str], ...] = (
    (QuestionType.TRUE_FALSE, "True or False questions", "automatic"),
    (QuestionType.MULTIPLE_CHOICE, "Multiple choice questions with single correct answer", "automatic"),
    (QuestionType.MULTIPLE_ANSWER, "Multiple choice questions with multiple correct answers", "automatic"),
    (QuestionType.MATCHING, "Matching items from two columns", "automatic"),
    (QuestionType.SHORT_ANSWER, "Brief text responses", "hybrid"),
    (QuestionType.ESSAY, "Extended text responses", "manual"),
    (QuestionType.FILL_IN_BLANK, "Text with missing words to be filled in", "hybrid"),
    (QuestionType.COMPUTATIONAL, "Mathematical or scientific calculations", "hybrid"),
    (QuestionType.DIAGRAM, "Drawing or labeling diagrams", "manual"),
    (QuestionType.DRAG_DROP, "Arranging items by dragging and dropping", "automatic"),
    (QuestionType.CODING, "Programming or coding questions", "hybrid"),
    (QuestionType.ORAL, "Spoken responses", "manual"),
)


class Question(Base):
    __tablename__ = "questions"

    question_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("assignments.assignment_id", ondelete="CASCADE"), index=True
    )
    type_id: Mapped[int] = mapped_column(ForeignKey("question_types.type_id"))
    content: Mapped[str] = mapped_column(Text, default="")
    points: Mapped[int] = mapped_column(Integer)
    options: Mapped[Optional[Any]] = mapped_column(JSON)
    correct_answer: Mapped[Optional[Any]] = mapped_column(JSON)
    question_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON)
    order_num: Mapped[Optional[int]] = mapped_column(Integer)

    question_type: Mapped[QuestionTypeRow] = relationship()


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id"),
        CheckConstraint("status IN ('draft', 'submitted', 'late', 'graded')"),
    )

    submission_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("assignments.assignment_id", ondelete="CASCADE"), index=True
    )
    student_id: Mapped[int] = mapped_column(Integer, index=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    status: Mapped[str] = mapped_column(String(20), default="submitted")
    total_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 2))
    graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    graded_by: Mapped[Optional[int]] = mapped_column(Integer)

    assignment: Mapped[Assignment] = relationship()


class QuestionResponse(Base):
    __tablename__ = "question_responses"
    __table_args__ = (UniqueConstraint("submission_id", "question_id"),)

    response_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.submission_id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.question_id", ondelete="CASCADE")
    )
    response_data: Mapped[Optional[Any]] = mapped_column(JSON)
    score: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2))
    feedback: Mapped[Optional[str]] = mapped_column(Text)
    graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    graded_by: Mapped[Optional[int]] = mapped_column(Integer)


class GradingScale(Base):
    __tablename__ = "grading_scales"

    scale_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    thresholds: Mapped[list["GradingScaleThreshold"]] = relationship(
        back_populates="scale", cascade="all, delete-orphan"
    )


class GradingScaleThreshold(Base):
    __tablename__ = "grading_scale_thresholds"
    __table_args__ = (UniqueConstraint("scale_id", "grade"),)

    threshold_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scale_id: Mapped[int] = mapped_column(ForeignKey("grading_scales.scale_id", ondelete="CASCADE"))
    grade: Mapped[str] = mapped_column(String(10))
    min_score: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    max_score: Mapped[Decimal] = mapped_column(Numeric(5, 2))

    scale: Mapped[GradingScale] = relationship(back_populates="thresholds")


class CourseGradingScale(Base):
    __tablename__ = "course_grading_scales"

    course_id: Mapped[int] = mapped_column(
        ForeignKey("courses.course_id", ondelete="CASCADE"), primary_key=True
    )
    scale_id: Mapped[int] = mapped_column(
        ForeignKey("grading_scales.scale_id", ondelete="CASCADE"), primary_key=True
    )
