"""
Grading scale resolution and validation.

Maps a numeric final grade onto the letter grade of a course's threshold
table, and checks threshold tables for ranges that would make that mapping
ambiguous or incomplete.
"""

from decimal import Decimal
from typing import Iterable, Sequence

from autograder.models import GradeThreshold


def resolve_letter_grade(
    final_grade: Decimal, thresholds: Iterable[GradeThreshold] | None
) -> GradeThreshold | None:
    """
    Find the threshold a final grade falls into.

    Thresholds are tried from the highest minimum down and both ends of a
    range are inclusive, so a grade sitting on a shared boundary resolves to
    the higher letter.

    Args:
        final_grade: Weighted course grade in percent.
        thresholds: The course's grading scale, in any order.

    Returns:
        The matching threshold, or None when the scale is missing or the
        grade falls into no range.
    """
    if not thresholds:
        return None

    for threshold in sorted(thresholds, key=lambda t: t.min_score, reverse=True):
        if threshold.contains(final_grade):
            return threshold
    return None


class ScaleValidationError(Exception):
    """Raised when grading scale validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = "Grading scale validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class ScaleValidator:
    """
    Validates grading scales for consistency.

    Checks:
    1. Every range has min_score <= max_score
    2. No two ranges overlap
    3. No gap wider than one step separates adjacent ranges
    4. No letter grade appears twice
    """

    # Thresholds are stored with two decimals, so 89.99 -> 90 is contiguous
    STEP = Decimal("0.01")

    def validate(self, thresholds: Sequence[GradeThreshold]) -> tuple[bool, list[str]]:
        """
        Validate a grading scale and return any issues found.

        Args:
            thresholds: The thresholds of one grading scale.

        Returns:
            Tuple of (is_valid, list of issues).
        """
        issues: list[str] = []

        if not thresholds:
            return False, ["Grading scale has no thresholds"]

        for threshold in thresholds:
            if threshold.min_score > threshold.max_score:
                issues.append(
                    f"Grade {threshold.grade}: minimum {threshold.min_score} "
                    f"exceeds maximum {threshold.max_score}"
                )

        issues.extend(self._check_duplicates(thresholds))
        issues.extend(self._check_adjacent(thresholds))

        return len(issues) == 0, issues

    def validate_or_raise(self, thresholds: Sequence[GradeThreshold]) -> None:
        """
        Validate a grading scale and raise if invalid.

        Raises:
            ScaleValidationError: If validation fails.
        """
        is_valid, issues = self.validate(thresholds)
        if not is_valid:
            raise ScaleValidationError(issues)

    def _check_duplicates(self, thresholds: Sequence[GradeThreshold]) -> list[str]:
        """Check for letter grades defined more than once."""
        issues: list[str] = []
        seen: set[str] = set()

        for threshold in thresholds:
            grade = threshold.grade.strip().upper()
            if grade in seen:
                issues.append(f"Duplicate grade: '{threshold.grade}'")
            else:
                seen.add(grade)

        return issues

    def _check_adjacent(self, thresholds: Sequence[GradeThreshold]) -> list[str]:
        """Check neighbouring ranges for overlaps and gaps."""
        issues: list[str] = []
        ordered = sorted(thresholds, key=lambda t: (t.min_score, t.max_score))

        for lower, upper in zip(ordered, ordered[1:]):
            if upper.min_score <= lower.max_score:
                issues.append(
                    f"Grades {lower.grade} and {upper.grade} overlap "
                    f"between {upper.min_score} and {min(lower.max_score, upper.max_score)}"
                )
            elif upper.min_score - lower.max_score > self.STEP:
                issues.append(
                    f"Gap between {lower.grade} (max {lower.max_score}) "
                    f"and {upper.grade} (min {upper.min_score})"
                )

        return issues
