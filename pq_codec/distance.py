"""Squared Euclidean distance kernels for pq-codec.

Every kernel follows one accumulation rule, so scalar, per-centroid,
per-batch and table-driven forms return identical values for the same pair
of rows:

1. element differences are taken in float32;
2. each difference is squared in float64 (exact for float32 inputs);
3. the squares of each block of ``dsub`` consecutive components are summed
   strictly left to right into a float64 partial;
4. the partials are summed strictly left to right, in block order.

Without ``dsub`` the whole row is a single block. Distance tables store the
step-3 partials of each subspace and finish with step 4, which is why a
table lookup equals ``squared_l2(x, y, dsub=pq.dsub)`` exactly.

Kernels
-------
squared_l2          — distance between two vectors of equal length
squared_l2_to_many  — distance from one vector to every row of a matrix
squared_l2_batch    — distance from every row of one matrix to every row of another
pairwise_squared_l2 — chunked ``squared_l2_batch`` for large centroid sets
ordered_sum         — step 4 on its own, for callers holding partials
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import ConfigurationError

# Upper bound on the (rows x centroids x width) scratch buffer of one chunk.
CHUNK_ELEMENTS: int = 1 << 22


def as_vector(x, name: str = "vector") -> np.ndarray:
    """Return ``x`` as a 1-D float32 array."""
    arr = np.asarray(x, dtype=np.float32)
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be 1-D, got shape {arr.shape}.")
    return arr


def as_matrix(x, name: str = "matrix") -> np.ndarray:
    """Return ``x`` as a 2-D float32 array."""
    arr = np.asarray(x, dtype=np.float32)
    if arr.ndim != 2:
        raise ConfigurationError(f"{name} must be 2-D, got shape {arr.shape}.")
    return arr


def ordered_sum(terms: np.ndarray) -> np.ndarray:
    """Sum ``terms`` along the last axis in float64, strictly left to right.

    Equal to Python's built-in ``sum`` over the same values.
    """
    terms = np.asarray(terms, dtype=np.float64)
    total = np.zeros(terms.shape[:-1], dtype=np.float64)
    for j in range(terms.shape[-1]):
        total += terms[..., j]
    return total


def _block_width(width: int, dsub: Optional[int]) -> int:
    if dsub is None:
        return width
    if dsub < 1 or width % dsub:
        raise ConfigurationError(f"Width {width} is not a multiple of dsub {dsub}.")
    return dsub


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------


def squared_l2_batch(
    points: np.ndarray,
    centroids: np.ndarray,
    dsub: Optional[int] = None,
) -> np.ndarray:
    """Squared L2 distance from each row of ``points`` to each row of ``centroids``.

    Parameters
    ----------
    points    : 2-D array of shape ``(n, w)``.
    centroids : 2-D array of shape ``(k, w)``.
    dsub      : block width of the accumulation; must divide ``w``.
                ``None`` sums the whole row as one block.

    Returns
    -------
    float64 array of shape ``(n, k)``.
    """
    points = as_matrix(points, "points")
    centroids = as_matrix(centroids, "centroids")
    width = points.shape[1]
    if width != centroids.shape[1]:
        raise ConfigurationError(
            f"Width mismatch: points have {width} components, "
            f"centroids have {centroids.shape[1]}."
        )
    block = _block_width(width, dsub)
    diff = (points[:, np.newaxis, :] - centroids[np.newaxis, :, :]).astype(np.float64)
    squares = diff * diff
    if block == width:
        return ordered_sum(squares)
    partials = ordered_sum(squares.reshape(squares.shape[:2] + (width // block, block)))
    return ordered_sum(partials)


def squared_l2_to_many(
    x: np.ndarray,
    centroids: np.ndarray,
    dsub: Optional[int] = None,
) -> np.ndarray:
    """Squared L2 distance from ``x`` to each row of ``centroids``, shape ``(k,)``."""
    x = as_vector(x)
    return squared_l2_batch(x[np.newaxis, :], centroids, dsub)[0]


def squared_l2(a: np.ndarray, b: np.ndarray, dsub: Optional[int] = None) -> float:
    """Sum of squared element-wise differences between two vectors."""
    a = as_vector(a, "a")
    b = as_vector(b, "b")
    if a.shape[0] != b.shape[0]:
        raise ConfigurationError(
            f"Length mismatch: expected {a.shape[0]}, got {b.shape[0]}."
        )
    return float(squared_l2_batch(a[np.newaxis, :], b[np.newaxis, :], dsub)[0, 0])


def pairwise_squared_l2(
    a: np.ndarray,
    b: np.ndarray,
    dsub: Optional[int] = None,
) -> np.ndarray:
    """All-pairs squared L2 distances, shape ``(len(a), len(b))``.

    Rows of ``a`` are processed in chunks so the scratch buffer stays below
    ``CHUNK_ELEMENTS`` entries.
    """
    a = as_matrix(a, "a")
    b = as_matrix(b, "b")
    step = max(1, CHUNK_ELEMENTS // max(1, b.shape[0] * b.shape[1]))
    out = np.empty((a.shape[0], b.shape[0]), dtype=np.float64)
    for start in range(0, a.shape[0], step):
        out[start:start + step] = squared_l2_batch(a[start:start + step], b, dsub)
    return out
