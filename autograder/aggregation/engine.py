"""
Aggregation engine - weighted final course grades.

Rolls the graded submissions of a student up into per-assignment and
per-category percentages, combines the categories by weight and resolves the
letter grade from the course's grading scale.
"""

import logging
from decimal import Decimal

from autograder.aggregation.scale import resolve_letter_grade
from autograder.errors import InvalidInputError, NotFoundError
from autograder.models import (
    AssignmentGrade,
    CategoryGrade,
    CategoryRecord,
    FinalGradeReport,
)
from autograder.store.base import QuestionStore

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def percentage(earned: Decimal, total: Decimal) -> Decimal:
    """Share of ``total`` in percent; zero when there is nothing to earn."""
    if total <= 0:
        return Decimal(0)
    return earned / total * HUNDRED


class AggregationEngine:
    """Computes and persists a student's weighted final grade for a course."""

    def __init__(self, store: QuestionStore):
        self._store = store

    def calculate_final_grade(
        self, student_id: int | None, course_id: int | None
    ) -> FinalGradeReport:
        """
        Calculate the final grade of a student in a course.

        Assignments without a graded submission earn zero but still count
        toward their category's total points. Categories without published
        assignments contribute zero. The final grade is written to the
        student's enrollment in the same transaction.

        Args:
            student_id: Student being graded.
            course_id: Course whose categories are aggregated.

        Returns:
            FinalGradeReport with the category and assignment breakdown.

        Raises:
            InvalidInputError: If either id is missing.
            NotFoundError: If the course has no categories or the student
                is not enrolled.
            StorageError: If the Question Store fails.
        """
        if student_id is None or course_id is None:
            raise InvalidInputError("Student ID and course ID are required")

        logger.info("Calculating final grade of student %s in course %s", student_id, course_id)

        with self._store.transaction() as tx:
            categories = tx.list_categories_and_assignments(course_id)
            if not categories:
                raise NotFoundError("Assignment categories for course", course_id)

            self._check_weights(course_id, categories)

            assignment_ids = [a.assignment_id for c in categories for a in c.assignments]
            earned = tx.list_graded_submission_totals(student_id, assignment_ids)

            category_grades = tuple(self._grade_category(c, earned) for c in categories)
            final_grade = sum((c.weighted_score for c in category_grades), Decimal(0))

            threshold = resolve_letter_grade(final_grade, tx.get_grading_scale(course_id))
            if threshold is None:
                logger.info("No letter grade for %s in course %s", final_grade, course_id)

            tx.write_final_grade(student_id, course_id, final_grade)

        logger.info(
            "Student %s final grade in course %s: %s (%s)",
            student_id,
            course_id,
            final_grade,
            threshold.grade if threshold else "-",
        )

        return FinalGradeReport(
            student_id=student_id,
            course_id=course_id,
            final_grade=final_grade,
            letter_grade=threshold.grade if threshold else None,
            category_grades=category_grades,
        )

    def _grade_category(
        self, category: CategoryRecord, earned: dict[int, Decimal]
    ) -> CategoryGrade:
        """Build the breakdown line of one category."""
        assignments: list[AssignmentGrade] = []
        category_total = Decimal(0)
        category_earned = Decimal(0)

        for assignment in category.assignments:
            total = Decimal(assignment.total_points)
            points = earned.get(assignment.assignment_id, Decimal(0))
            category_total += total
            category_earned += points
            assignments.append(
                AssignmentGrade(
                    assignment_id=assignment.assignment_id,
                    title=assignment.title,
                    total_points=total,
                    earned_points=points,
                    percentage=percentage(points, total),
                )
            )

        category_percentage = percentage(category_earned, category_total)
        return CategoryGrade(
            category_id=category.category_id,
            name=category.name,
            weight=category.weight,
            percentage=category_percentage,
            weighted_score=category_percentage * category.weight / HUNDRED,
            assignments=tuple(assignments),
        )

    @staticmethod
    def _check_weights(course_id: int, categories: list[CategoryRecord]) -> None:
        """Warn about category weights that do not add up to 100."""
        total_weight = sum((c.weight for c in categories), Decimal(0))
        if total_weight != HUNDRED:
            logger.warning(
                "Category weights of course %s sum to %s instead of 100", course_id, total_weight
            )
