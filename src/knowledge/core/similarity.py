"""Vector similarity helpers shared by the stores and the scan fallback."""

import math
from collections.abc import Sequence


def clamp_similarity(value: float) -> float:
    """Keep a cosine similarity inside [-1, 1] despite floating point error."""
    return max(-1.0, min(1.0, value))


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Returns 0.0 when the lengths differ or either vector has zero norm.
    """
    if len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = math.sqrt(sum(a * a for a in vec1))
    magnitude2 = math.sqrt(sum(b * b for b in vec2))

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return clamp_similarity(dot_product / (magnitude1 * magnitude2))
