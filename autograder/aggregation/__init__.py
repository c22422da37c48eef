"""
Aggregation Module.

Weighted final grades and letter-grade resolution.
"""

from autograder.aggregation.engine import AggregationEngine
from autograder.aggregation.scale import (
    ScaleValidationError,
    ScaleValidator,
    resolve_letter_grade,
)

__all__ = [
    "AggregationEngine",
    "ScaleValidationError",
    "ScaleValidator",
    "resolve_letter_grade",
]
