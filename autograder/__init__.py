"""
Autograder - the grading engine of an education platform.

This package scores student responses to heterogeneous question types,
routes ambiguous answers to human graders, and aggregates graded
submissions into weighted final course grades with letter grades.
"""

__version__ = "1.0.0"
__author__ = "Autograder Team"
