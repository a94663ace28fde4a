from __future__ import annotations

import math
from collections.abc import Sequence

from gamemaster.memory.types import MAX_IMPORTANCE, MIN_IMPORTANCE

IMPORTANT_KEYWORDS = (
    "character",
    "quest",
    "story",
    "important",
    "critical",
    "death",
    "victory",
    "defeat",
    "discovery",
    "secret",
    "treasure",
    "magic",
    "spell",
    "artifact",
    "legendary",
)

URGENT_KEYWORDS = (
    "emergency",
    "urgent",
    "danger",
    "threat",
    "immediate",
    "crisis",
    "alarm",
    "warning",
    "attack",
    "combat",
)


class EmbeddingDimensionError(ValueError):
    """Two vectors of different lengths were compared."""


def vector_norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Dot product over the product of magnitudes; 0.0 for zero vectors."""

    if len(left) != len(right):
        raise EmbeddingDimensionError(
            f"Cannot compare embeddings of dimension {len(left)} and {len(right)}"
        )
    left_norm = vector_norm(left)
    right_norm = vector_norm(right)
    if left_norm == 0 or right_norm == 0:
        return 0.0
    dot = 0.0
    for l_value, r_value in zip(left, right):
        dot += l_value * r_value
    score = dot / (left_norm * right_norm)
    return max(-1.0, min(1.0, score))


def clamp_importance(value: int) -> int:
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, int(value)))


def estimate_importance(content: str) -> int:
    """Keyword and length heuristic for memories created without a score."""

    score = 1
    lowered = content.lower()
    if len(content) > 200:
        score += 1
    if len(content) > 500:
        score += 1
    if any(keyword in lowered for keyword in IMPORTANT_KEYWORDS):
        score += 2
    if any(keyword in lowered for keyword in URGENT_KEYWORDS):
        score += 3
    if "?" in content:
        score += 1
    return clamp_importance(score)
