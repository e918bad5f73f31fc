"""Codebook training for pq-codec.

init_centroids  — seed ``k`` centroids from distinct training points
e_step / m_step — one assignment step and one update step of Lloyd's algorithm
kmeans          — full Lloyd's k-means for one subspace
train_codebooks — one Codebook per subspace from a training matrix
compute_inertia — low-level helper
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .distance import CHUNK_ELEMENTS, as_matrix, squared_l2_batch
from .errors import ConfigurationError, DegenerateTrainingWarning
from .types import Codebook, PQConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------


def compute_inertia(x: np.ndarray, centroids: np.ndarray, codes: np.ndarray) -> float:
    """Sum of squared L2 distances from each point to its assigned centroid."""
    diff = x.astype(np.float64) - centroids[codes].astype(np.float64)
    return float(np.sum(diff * diff))


def nearest_centroids(x: np.ndarray, centroids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Nearest centroid index and squared distance for every row of ``x``.

    Uses the same kernel and lowest-index tie-break as ``Codebook.assign``.
    Rows are processed in chunks so the scratch buffer stays bounded.
    """
    n = x.shape[0]
    k, width = centroids.shape
    step = max(1, CHUNK_ELEMENTS // max(1, k * width))
    codes = np.empty(n, dtype=np.int64)
    dists = np.empty(n, dtype=np.float64)
    for start in range(0, n, step):
        block = squared_l2_batch(x[start:start + step], centroids)
        best = np.argmin(block, axis=1)
        codes[start:start + step] = best
        dists[start:start + step] = block[np.arange(block.shape[0]), best]
    return codes, dists


# ---------------------------------------------------------------------------
# Lloyd's algorithm
# ---------------------------------------------------------------------------


def init_centroids(x: np.ndarray, ksub: int, rng: np.random.Generator) -> np.ndarray:
    """Pick ``ksub`` training points as initial centroids.

    With fewer points than centroids the permuted points are repeated
    cyclically; the repeats lose every tie to their lower-index original
    and keep their initial value.
    """
    n = x.shape[0]
    perm = rng.permutation(n)
    if n >= ksub:
        idx = perm[:ksub]
    else:
        idx = perm[np.arange(ksub) % n]
    return x[idx].astype(np.float32, copy=True)


def e_step(x: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """Assignment step: nearest centroid index for every point."""
    codes, _ = nearest_centroids(x, centroids)
    return codes


def m_step(
    x: np.ndarray,
    centroids: np.ndarray,
    codes: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Update step: move each centroid to the mean of its points.

    A centroid with no assigned points keeps its previous value; empty
    clusters are never reseeded.

    Returns
    -------
    (new centroids, per-centroid point counts)
    """
    k, width = centroids.shape
    counts = np.bincount(codes, minlength=k)
    sums = np.zeros((k, width), dtype=np.float64)
    np.add.at(sums, codes, x.astype(np.float64))
    updated = centroids.copy()
    filled = counts > 0
    updated[filled] = (sums[filled] / counts[filled, np.newaxis]).astype(np.float32)
    return updated, counts


@dataclass
class KMeansResult:
    """Outcome of one k-means run.

    centroids  : float32 ``(k, width)``
    codes      : final assignment of every training point
    counts     : points per centroid under the final assignment
    inertia    : summed squared distance under the final assignment
    iterations : update steps actually run
    """

    centroids: np.ndarray
    codes: np.ndarray
    counts: np.ndarray
    inertia: float
    iterations: int

    @property
    def empty_clusters(self) -> int:
        return int(np.count_nonzero(self.counts == 0))


def kmeans(
    x: np.ndarray,
    ksub: int,
    niter: int,
    rng: np.random.Generator,
    tol: Optional[float] = None,
) -> KMeansResult:
    """Lloyd's k-means on the rows of ``x``.

    Parameters
    ----------
    x     : training points, shape ``(n, width)``.
    ksub  : number of centroids.
    niter : maximum number of assign/update rounds.
    rng   : generator used for initialisation.
    tol   : optional early stop once the largest squared centroid
            movement of a round is ``<= tol``.
    """
    x = as_matrix(x, "training points")
    if x.shape[0] == 0:
        raise ConfigurationError("Cannot run k-means on an empty training set.")
    centroids = init_centroids(x, ksub, rng)
    iterations = 0
    for it in range(niter):
        codes = e_step(x, centroids)
        updated, _ = m_step(x, centroids, codes)
        shift = float(np.max(np.sum((updated.astype(np.float64) - centroids) ** 2, axis=1)))
        centroids = updated
        iterations = it + 1
        if tol is not None and shift <= tol:
            logger.debug("k-means converged after %d iterations (shift=%.3g)", iterations, shift)
            break
    codes, _ = nearest_centroids(x, centroids)
    counts = np.bincount(codes, minlength=ksub)
    return KMeansResult(
        centroids=centroids,
        codes=codes,
        counts=counts,
        inertia=compute_inertia(x, centroids, codes),
        iterations=iterations,
    )


# ---------------------------------------------------------------------------
# Codebook training
# ---------------------------------------------------------------------------


def train_codebooks(
    vectors: np.ndarray,
    config: PQConfig,
    rng: Optional[np.random.Generator] = None,
) -> List[Codebook]:
    """Train one Codebook per subspace.

    Subspaces are trained in order from a single generator seeded with
    ``config.seed``, so the same seed, sample order and iteration budget
    always give byte-identical codebooks. At most
    ``config.max_points`` rows are used per subspace; a larger sample is
    reshuffled for every subspace before truncation.

    Warns with ``DegenerateTrainingWarning`` when there are fewer rows than
    centroids or when some centroid ends with no assigned points.
    """
    vectors = as_matrix(vectors, "training vectors")
    n, dim = vectors.shape
    if dim != config.dim:
        raise ConfigurationError(
            f"Training vector length mismatch: expected {config.dim}, got {dim}."
        )
    if n == 0:
        raise ConfigurationError("Cannot train codebooks on an empty training set.")

    ksub, dsub = config.ksub, config.dsub
    if n < ksub:
        msg = f"Only {n} training vectors for {ksub} centroids per subspace; codebooks are under-determined."
        logger.warning(msg)
        warnings.warn(msg, DegenerateTrainingWarning, stacklevel=2)

    rng = rng if rng is not None else np.random.default_rng(config.seed)
    n_points = min(n, config.max_points)
    perm = np.arange(n)
    codebooks: List[Codebook] = []
    empty_total = 0
    for m in range(config.nsubq):
        if n_points != n:
            rng.shuffle(perm)
        xslice = vectors[perm[:n_points], m * dsub:(m + 1) * dsub]
        result = kmeans(xslice, ksub, config.niter, rng, tol=config.tol)
        empty_total += result.empty_clusters
        logger.debug(
            "subspace %d/%d: %d iterations, inertia=%.6g, empty=%d",
            m + 1, config.nsubq, result.iterations, result.inertia, result.empty_clusters,
        )
        codebooks.append(Codebook(result.centroids))

    if empty_total:
        msg = f"{empty_total} centroid(s) across {config.nsubq} subspace(s) received no training points."
        logger.warning(msg)
        warnings.warn(msg, DegenerateTrainingWarning, stacklevel=2)
    logger.info(
        "Trained %d codebooks (k=%d, dsub=%d) on %d of %d vectors",
        config.nsubq, ksub, dsub, n_points, n,
    )
    return codebooks
