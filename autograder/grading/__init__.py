"""
Grading Module.

Per-question-type grading strategies and the submission-level grader.
"""

from autograder.grading.grader import ResponseGrader
from autograder.grading.similarity import text_similarity
from autograder.grading.strategies import GradingStrategy, StrategyOutcome, StrategyRegistry

__all__ = [
    "GradingStrategy",
    "ResponseGrader",
    "StrategyOutcome",
    "StrategyRegistry",
    "text_similarity",
]
