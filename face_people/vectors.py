"""
Vector primitives used for face identity comparisons.

Embeddings produced by the recognition models are L2-normalised, so cosine
similarity reduces to a dot product.  Computations are carried out in
float64 to keep threshold comparisons stable regardless of the storage
precision of the embeddings.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


def normalize(v: np.ndarray) -> np.ndarray:
    """Return ``v`` divided by its L2 norm.

    A zero vector is returned unchanged.
    """
    v = np.asarray(v, dtype=np.float64)
    norm = float(np.linalg.norm(v))
    if norm == 0.0:
        return v
    return v / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Dot product of two unit vectors.

    Raises
    ------
    ValueError
        If the vectors do not have the same length.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Cannot compare vectors of shape {a.shape} and {b.shape}")
    return float(np.dot(a, b))


def centroid(vectors: Sequence[np.ndarray]) -> np.ndarray:
    """Element-wise mean of ``vectors``, normalised to unit length."""
    if len(vectors) == 0:
        raise ValueError("centroid() requires at least one vector")
    stacked = np.vstack([np.asarray(v, dtype=np.float64) for v in vectors])
    return normalize(stacked.mean(axis=0))
