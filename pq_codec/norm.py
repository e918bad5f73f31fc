"""Scalar norm sub-codec.

Magnitude is split out of each vector so the main codebooks only have to
cover directions. The norm is quantized with a one-dimensional product
quantizer (``dim = dsub = 1``) and multiplied back in on reconstruction::

    approx = decode(direction_code) * decode(norm_code)[0]
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from .distance import as_matrix, as_vector
from .errors import ConfigurationError
from .quantizer import ProductQuantizer
from .types import Codebook, PQConfig


def split_norms(vectors: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split rows into unit directions and L2 norms.

    Computed in float64 and returned as float32. A zero row gets a zero
    direction and norm ``0``.

    Returns
    -------
    (directions of shape ``(n, d)``, norms of shape ``(n,)``)
    """
    x = as_matrix(vectors, "vectors").astype(np.float64)
    norms = np.linalg.norm(x, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    directions = x / safe[:, np.newaxis]
    return directions.astype(np.float32), norms.astype(np.float32)


class NormSubcodec:
    """One-dimensional quantizer for vector norms.

    Parameters
    ----------
    pq : ProductQuantizer
        A quantizer with ``dim == dsub == 1``.
    """

    def __init__(self, pq: ProductQuantizer) -> None:
        if pq.dim != 1 or pq.dsub != 1:
            raise ConfigurationError(
                f"Norm sub-codec needs dim == dsub == 1, got dim={pq.dim}, dsub={pq.dsub}."
            )
        self.pq = pq

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def train(
        cls,
        norms: Sequence[float],
        nbits: int = 8,
        niter: int = 25,
        seed: int = 1234,
        max_points_per_cluster: int = 256,
        tol: Optional[float] = None,
    ) -> "NormSubcodec":
        """Train the scalar codebook on observed norms."""
        config = PQConfig(
            dim=1,
            dsub=1,
            nbits=nbits,
            niter=niter,
            seed=seed,
            max_points_per_cluster=max_points_per_cluster,
            tol=tol,
        )
        column = as_vector(norms, "norms")[:, np.newaxis]
        return cls(ProductQuantizer.train(column, config))

    @classmethod
    def from_centroids(cls, centroids: Sequence[float]) -> "NormSubcodec":
        """Build a sub-codec from explicit scalar centroids."""
        column = as_vector(centroids, "centroids")[:, np.newaxis]
        return cls(ProductQuantizer([Codebook(column)]))

    @property
    def codebook(self) -> Codebook:
        return self.pq.codebooks[0]

    @property
    def ksub(self) -> int:
        return self.pq.ksub

    @property
    def nbits(self) -> int:
        return self.pq.nbits

    @property
    def code_dtype(self) -> np.dtype:
        return self.pq.code_dtype

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def encode(self, norms: Sequence[float]) -> np.ndarray:
        """Norm code for every entry of ``norms``, shape ``(n,)``."""
        column = as_vector(norms, "norms")[:, np.newaxis]
        return self.pq.encode_batch(column)[:, 0]

    def decode(self, codes: Sequence[int]) -> np.ndarray:
        """Quantized norms for ``codes``, float32 shape ``(n,)``."""
        column = np.asarray(codes).reshape(-1, 1)
        return self.pq.decode_batch(column)[:, 0]

    def reconstruct(self, direction: np.ndarray, norm_code: int) -> np.ndarray:
        """Scale ``direction`` by the norm that ``norm_code`` stands for."""
        norm = float(self.decode([norm_code])[0])
        scaled = as_vector(direction, "direction").astype(np.float64) * norm
        return scaled.astype(np.float32)

    def reconstruct_batch(self, directions: np.ndarray, norm_codes: Sequence[int]) -> np.ndarray:
        dirs = as_matrix(directions, "directions")
        norms = self.decode(norm_codes).astype(np.float64)
        if norms.shape[0] != dirs.shape[0]:
            raise ConfigurationError(
                f"Row count mismatch: {dirs.shape[0]} directions, {norms.shape[0]} norm codes."
            )
        return (dirs.astype(np.float64) * norms[:, np.newaxis]).astype(np.float32)

    def __repr__(self) -> str:
        return f"NormSubcodec(ksub={self.ksub})"
