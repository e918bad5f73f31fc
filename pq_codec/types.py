"""Core record types for pq-codec.

PQConfig — codec configuration: dimension, subspace width, code width and
           training budget.
Codebook — immutable set of ``k`` centroids for one subspace, queried for
           nearest-centroid assignment.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .distance import as_matrix, as_vector, squared_l2_to_many
from .errors import ConfigurationError

MIN_NBITS: int = 1
MAX_NBITS: int = 16
MAX_KSUB: int = 1 << MAX_NBITS


def code_dtype_for(nbits: int) -> np.dtype:
    """Smallest unsigned dtype holding a centroid index of ``nbits`` bits."""
    return np.dtype(np.uint8) if nbits <= 8 else np.dtype(np.uint16)


# ---------------------------------------------------------------------------
# PQConfig
# ---------------------------------------------------------------------------


@dataclass
class PQConfig:
    """Product quantizer configuration.

    Schema
    ------
    dim                    : int  >= 1        — vector length ``d``
    dsub                   : int  >= 1        — subspace width ``ds``; must divide ``dim``
    nbits                  : int  in [1, 16]  — bits per subspace code, ``k = 2 ** nbits``
    niter                  : int  >= 1        — k-means iteration budget
    seed                   : int              — seed of the training generator
    max_points_per_cluster : int  >= 1        — training sample cap is this times ``k``
    tol                    : float or None    — stop early once no centroid moves
                                               more than this (squared distance)
    """

    dim: int
    dsub: int
    nbits: int = 8
    niter: int = 25
    seed: int = 1234
    max_points_per_cluster: int = 256
    tol: Optional[float] = None

    def __post_init__(self) -> None:
        if self.dim < 1:
            raise ConfigurationError(f"dim must be >= 1, got {self.dim}")
        if self.dsub < 1:
            raise ConfigurationError(f"dsub must be >= 1, got {self.dsub}")
        if self.dim % self.dsub != 0:
            raise ConfigurationError(
                f"dim {self.dim} is not a multiple of dsub {self.dsub} "
                f"({self.dim % self.dsub} trailing components)"
            )
        if not (MIN_NBITS <= self.nbits <= MAX_NBITS):
            raise ConfigurationError(
                f"nbits {self.nbits} out of range [{MIN_NBITS}, {MAX_NBITS}]"
            )
        if self.niter < 1:
            raise ConfigurationError(f"niter must be >= 1, got {self.niter}")
        if self.max_points_per_cluster < 1:
            raise ConfigurationError(
                f"max_points_per_cluster must be >= 1, got {self.max_points_per_cluster}"
            )
        if self.tol is not None and self.tol < 0:
            raise ConfigurationError(f"tol must be >= 0, got {self.tol}")

    # ------------------------------------------------------------------
    # Derived sizes
    # ------------------------------------------------------------------

    @property
    def nsubq(self) -> int:
        """Number of subspaces ``m``."""
        return self.dim // self.dsub

    @property
    def ksub(self) -> int:
        """Centroids per subspace ``k``."""
        return 1 << self.nbits

    @property
    def max_points(self) -> int:
        return self.max_points_per_cluster * self.ksub

    @property
    def code_dtype(self) -> np.dtype:
        return code_dtype_for(self.nbits)

    @property
    def code_size(self) -> int:
        """Bytes per encoded vector."""
        return self.nsubq * self.code_dtype.itemsize

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PQConfig":
        return cls(**data)


# ---------------------------------------------------------------------------
# Codebook
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Codebook:
    """Centroids of one subspace.

    The centroid array is copied on construction and marked read-only, so a
    Codebook can be shared between any number of encoders, decoders and
    distance tables. Retraining produces a new Codebook.

    Schema
    ------
    centroids : float32 array of shape ``(k, dsub)``; ``k`` a power of two
                in ``[1, 65536]``
    """

    centroids: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        arr = np.array(as_matrix(self.centroids, "centroids"), dtype=np.float32, copy=True)
        k, dsub = arr.shape
        if k < 1 or dsub < 1:
            raise ConfigurationError(f"Codebook needs k >= 1 and dsub >= 1, got shape {arr.shape}")
        if k > MAX_KSUB or k & (k - 1):
            raise ConfigurationError(
                f"Codebook size {k} is not a power of two in [1, {MAX_KSUB}]"
            )
        arr.setflags(write=False)
        object.__setattr__(self, "centroids", arr)

    # ------------------------------------------------------------------

    @property
    def ksub(self) -> int:
        return self.centroids.shape[0]

    @property
    def dsub(self) -> int:
        return self.centroids.shape[1]

    @property
    def nbits(self) -> int:
        return self.ksub.bit_length() - 1

    def centroid(self, index: int) -> np.ndarray:
        """Read-only view of centroid ``index``."""
        if not (0 <= index < self.ksub):
            raise IndexError(f"centroid index {index} out of range [0, {self.ksub})")
        return self.centroids[index]

    def distances(self, x: np.ndarray) -> np.ndarray:
        """Squared distance from ``x`` to every centroid, float64 shape ``(k,)``."""
        x = as_vector(x, "subvector")
        if x.shape[0] != self.dsub:
            raise ConfigurationError(
                f"Subvector length mismatch: expected {self.dsub}, got {x.shape[0]}."
            )
        return squared_l2_to_many(x, self.centroids)

    def assign(self, x: np.ndarray) -> Tuple[int, float]:
        """Nearest centroid of ``x`` as ``(index, squared distance)``.

        Ties resolve to the lowest index: a later centroid replaces the
        current best only when strictly closer.
        """
        dists = self.distances(x)
        index = int(np.argmin(dists))
        return index, float(dists[index])

    def __repr__(self) -> str:
        return f"Codebook(ksub={self.ksub}, dsub={self.dsub})"

    def to_dict(self) -> Dict[str, Any]:
        return {"centroids": self.centroids.tolist()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Codebook":
        return cls(centroids=np.array(data["centroids"], dtype=np.float32))
