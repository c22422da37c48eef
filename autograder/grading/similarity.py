"""
Free-text similarity scoring.

Both strings are lower-cased, split into word tokens and reduced to their
Porter stems before comparison, so "Running dogs" and "run dog" are
treated as the same answer. The stemmed strings are then compared with the
Sorensen-Dice coefficient over character bigrams, ignoring whitespace, which
gives a score in [0, 1] that does not depend on word order.
"""

from typing import Callable

import textdistance
from nltk.stem import PorterStemmer
from nltk.tokenize import RegexpTokenizer

SimilarityFunction = Callable[[str, str], float]

_tokenizer = RegexpTokenizer(r"\w+")
_stemmer = PorterStemmer()
_bigram_dice = textdistance.Sorensen(qval=2, as_set=False, external=False)


def normalize_text(text: str) -> str:
    """
    Reduce text to a space-joined sequence of word stems.

    Args:
        text: Raw free-text answer.

    Returns:
        Normalized text, empty when the input has no word characters.
    """
    tokens = _tokenizer.tokenize(text.lower())
    return " ".join(_stemmer.stem(token) for token in tokens)


def text_similarity(text_a: str, text_b: str) -> float:
    """
    Compute the similarity of two free-text answers.

    Args:
        text_a: First text (usually the student's answer).
        text_b: Second text (usually the expected answer).

    Returns:
        Similarity in [0, 1]; 0.0 when either side has no words.
    """
    stemmed_a = normalize_text(text_a).replace(" ", "")
    stemmed_b = normalize_text(text_b).replace(" ", "")

    if not stemmed_a or not stemmed_b:
        return 0.0
    if stemmed_a == stemmed_b:
        return 1.0
    # A single character has no bigrams
    if len(stemmed_a) < 2 or len(stemmed_b) < 2:
        return 0.0

    return float(_bigram_dice(stemmed_a, stemmed_b))
