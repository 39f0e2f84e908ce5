"""
Vector comparison and input validation for face vectors.
"""
import math
from numbers import Real
from typing import Any, List, Optional, Sequence

import numpy as np

from facematch.config import VECTOR_DIM
from facematch.errors import ValidationError


def similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector is missing, the lengths differ, or
    either norm is zero. Sums are exactly rounded (math.fsum), so
    similarity(v, v) is exactly 1.0 and similarity(a, b) == similarity(b, a).

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1]
    """
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    dot = math.fsum(va * vb)
    norm_product = math.fsum(va * va) * math.fsum(vb * vb)
    if not norm_product > 0 or not math.isfinite(norm_product):
        return 0.0

    result = dot / math.sqrt(norm_product)
    if not math.isfinite(result):
        return 0.0
    return max(-1.0, min(1.0, result))


def validate_vector(vector: Any, field: str = "vector") -> List[float]:
    """
    Check that ``vector`` is a list of exactly VECTOR_DIM finite numbers.

    Returns:
        The vector as a list of floats

    Raises:
        ValidationError: naming ``field`` when the check fails
    """
    if vector is None:
        raise ValidationError(field, f"{field} is required")

    if not isinstance(vector, (list, tuple)) or len(vector) != VECTOR_DIM:
        raise ValidationError(field, f"{field} must be an array of {VECTOR_DIM} floats")

    values = []
    for i, value in enumerate(vector):
        # bool is a Real subclass
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValidationError(field, f"{field}[{i}] must be a number")
        value = float(value)
        if not math.isfinite(value):
            raise ValidationError(field, f"{field}[{i}] must be finite")
        values.append(value)

    return values


def validate_name(name: Any, field: str = "name") -> str:
    """Return the trimmed name, or raise ValidationError if it is empty."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(field, "Name is required")
    return name.strip()
