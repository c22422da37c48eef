"""
Question Store Module.

Transactional access to questions, responses, submissions and course
grading data.
"""

from autograder.store.base import QuestionStore, StoreTransaction
from autograder.store.memory import InMemoryQuestionStore
from autograder.store.sql import SqlQuestionStore, create_store_engine

__all__ = [
    "InMemoryQuestionStore",
    "QuestionStore",
    "SqlQuestionStore",
    "StoreTransaction",
    "create_store_engine",
]
