"""Vector similarity helpers."""
from __future__ import annotations

from typing import Sequence

import numpy as np

from .errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return the cosine of the angle between ``a`` and ``b``.

    Vectors of different length raise :class:`DimensionMismatchError`. When
    either vector has zero magnitude the similarity is ``0.0``.
    """

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        raise DimensionMismatchError(left.size, right.size)

    norm = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)
