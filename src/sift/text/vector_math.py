"""Vector primitives for brute-force semantic search."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of *a* and *b*, clamped to [0, 1].

    Returns 0.0 for empty input, mismatched dimensions, or a zero vector on
    either side; these are treated as "no similarity", not as errors.
    """
    if len(a) == 0 or len(b) == 0:
        return 0.0
    if len(a) != len(b):
        logger.debug("Vector dimension mismatch: %d vs %d", len(a), len(b))
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    # Floating point can push identical vectors a hair past 1.0
    return min(1.0, max(0.0, similarity))


def quantize(vector: Sequence[float], digits: int = 4) -> list[float]:
    """Round every component of *vector* to *digits* decimal places."""
    return [float(x) for x in np.round(np.asarray(vector, dtype=np.float64), digits)]
