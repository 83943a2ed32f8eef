"""
Deterministic content similarity used by the thread matcher.

Texts are reduced to sets of tokens and compared with the cosine of their
binary bag-of-words vectors over the shared vocabulary.
"""
import re
from typing import Iterable, List, Set

import numpy as np

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
ENTITY_PATTERN = re.compile(r"\b[A-Z][a-zA-Z0-9]+\b")

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "of", "to", "in", "on", "for",
    "with", "is", "are", "was", "were", "be", "been", "being", "this",
    "that", "these", "those", "it", "its", "as", "at", "by", "from", "has",
    "have", "had", "into", "about", "up", "out", "over", "after", "before",
    "so", "than", "then", "there", "their", "they", "we", "you", "he",
    "she", "his", "her", "our", "your", "not", "no", "do", "does", "did",
    "can", "will", "just", "now", "what", "which", "who", "how", "why",
    "when", "where", "all", "any", "some", "more", "most", "very", "if",
})


def tokenize(text: str) -> Set[str]:
    """Lowercased content tokens without stopwords or single characters."""
    return {
        token
        for token in TOKEN_PATTERN.findall(text.lower())
        if len(token) > 1 and token not in STOPWORDS
    }


def extract_entities(text: str) -> Set[str]:
    """Capitalised words, a cheap stand-in for named entities."""
    return {
        word.lower()
        for word in ENTITY_PATTERN.findall(text)
        if word.lower() not in STOPWORDS
    }


def _vector(tokens: Set[str], vocabulary: List[str]) -> np.ndarray:
    return np.array([1.0 if term in tokens else 0.0 for term in vocabulary], dtype="float32")


def cosine_similarity(a: Set[str], b: Set[str]) -> float:
    """
    Cosine similarity of two token sets.

    Raises:
        ValueError: If either side has no tokens
    """
    if not a or not b:
        raise ValueError("cannot compare empty content")

    vocabulary = sorted(a | b)
    va = _vector(a, vocabulary)
    vb = _vector(b, vocabulary)

    score = float(np.dot(va, vb) / (np.linalg.norm(va) * np.linalg.norm(vb)))
    # Rounded so equal inputs compare equal across platforms
    return round(min(max(score, 0.0), 1.0), 6)


def new_tokens(item_tokens: Set[str], known: Iterable[str]) -> Set[str]:
    return item_tokens - set(known)
