"""ProductQuantizer — encoder and decoder over per-subspace codebooks.

Public API
----------
ProductQuantizer
    .train()                 — train codebooks and return a new quantizer
    .retrain()               — train a replacement with this quantizer's settings
    .subspace()              — bounds-checked slice of one subspace
    .assign()                — nearest centroid in one subspace
    .encode()                — vector -> code
    .encode_with_distances() — vector -> (code, per-subspace distances)
    .encode_batch()          — matrix -> codes
    .decode()                — code -> approximate vector
    .decode_batch()          — codes -> approximate matrix
    .distance()              — squared distance under the per-subspace accumulation
    .asymmetric_table()      — query-vs-code distance table
    .symmetric_table()       — code-vs-code distance table (cached)
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .clustering import nearest_centroids, train_codebooks
from .distance import as_matrix, as_vector, squared_l2
from .errors import ConfigurationError
from .tables import AsymmetricDistanceTable, SymmetricDistanceTable
from .types import Codebook, PQConfig, code_dtype_for


class ProductQuantizer:
    """Product quantizer over ``m`` subspaces of width ``dsub``.

    A quantizer is always built from trained codebooks and never mutates
    them; use :meth:`train` or :meth:`retrain` to obtain a new one and swap
    the reference.

    Parameters
    ----------
    codebooks : Sequence[Codebook]
        One codebook per subspace, in subspace order. All must share the
        same ``ksub`` and ``dsub``.
    config : PQConfig, optional
        Training settings kept for :meth:`retrain`. Derived from the
        codebooks when omitted.
    """

    def __init__(
        self,
        codebooks: Sequence[Codebook],
        config: Optional[PQConfig] = None,
    ) -> None:
        if not codebooks:
            raise ConfigurationError("ProductQuantizer needs at least one codebook.")
        ksub, dsub = codebooks[0].ksub, codebooks[0].dsub
        for i, cb in enumerate(codebooks):
            if cb.ksub != ksub or cb.dsub != dsub:
                raise ConfigurationError(
                    f"Codebook {i} has shape ({cb.ksub}, {cb.dsub}), "
                    f"expected ({ksub}, {dsub})."
                )
        self.codebooks: Tuple[Codebook, ...] = tuple(codebooks)
        self.ksub: int = ksub
        self.dsub: int = dsub
        self.nsubq: int = len(codebooks)
        self.dim: int = self.nsubq * dsub
        self.nbits: int = codebooks[0].nbits
        self.code_dtype: np.dtype = code_dtype_for(self.nbits)
        if config is not None and (config.dim != self.dim or config.dsub != dsub):
            raise ConfigurationError(
                f"Config (dim={config.dim}, dsub={config.dsub}) does not match "
                f"codebooks (dim={self.dim}, dsub={dsub})."
            )
        self.config: Optional[PQConfig] = config
        self._symmetric: Optional[SymmetricDistanceTable] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def train(cls, vectors: np.ndarray, config: PQConfig) -> "ProductQuantizer":
        """Train codebooks on ``vectors`` (shape ``(n, config.dim)``)."""
        return cls(train_codebooks(vectors, config), config=config)

    def retrain(self, vectors: np.ndarray) -> "ProductQuantizer":
        """Train a new quantizer with the same configuration."""
        if self.config is None:
            raise ConfigurationError("Quantizer was built without a PQConfig; use train().")
        return type(self).train(vectors, self.config)

    @classmethod
    def from_centroids(cls, centroids: np.ndarray) -> "ProductQuantizer":
        """Build a quantizer from a ``(m, k, dsub)`` centroid array."""
        arr = np.asarray(centroids, dtype=np.float32)
        if arr.ndim != 3:
            raise ConfigurationError(
                f"centroids must have shape (m, k, dsub), got {arr.shape}"
            )
        return cls([Codebook(sub) for sub in arr])

    @property
    def centroids(self) -> np.ndarray:
        """All centroids stacked as ``(m, k, dsub)`` (a copy)."""
        return np.stack([cb.centroids for cb in self.codebooks])

    @property
    def code_size(self) -> int:
        """Bytes per encoded vector."""
        return self.nsubq * self.code_dtype.itemsize

    # ------------------------------------------------------------------
    # Validation / views
    # ------------------------------------------------------------------

    def validate_vector(self, vector) -> np.ndarray:
        arr = as_vector(vector)
        if arr.shape[0] != self.dim:
            raise ConfigurationError(
                f"Vector length mismatch: expected {self.dim}, got {arr.shape[0]}."
            )
        return arr

    @staticmethod
    def _integer_codes(codes) -> np.ndarray:
        arr = np.asarray(codes)
        if not np.issubdtype(arr.dtype, np.integer):
            raise ConfigurationError(f"Codes must have an integer dtype, got {arr.dtype}.")
        return arr

    def validate_code(self, code) -> np.ndarray:
        arr = self._integer_codes(code)
        if arr.ndim != 1 or arr.shape[0] != self.nsubq:
            raise ConfigurationError(
                f"Code length mismatch: expected {self.nsubq}, got shape {arr.shape}."
            )
        bad = np.flatnonzero((arr < 0) | (arr >= self.ksub))
        if bad.size:
            m = int(bad[0])
            raise IndexError(
                f"code value {int(arr[m])} in subspace {m} out of range [0, {self.ksub})"
            )
        return arr.astype(np.intp)

    def validate_codes(self, codes) -> np.ndarray:
        arr = self._integer_codes(codes)
        if arr.ndim != 2 or arr.shape[1] != self.nsubq:
            raise ConfigurationError(
                f"Codes must have shape (n, {self.nsubq}), got {arr.shape}."
            )
        bad = np.argwhere((arr < 0) | (arr >= self.ksub))
        if bad.size:
            row, m = (int(v) for v in bad[0])
            raise IndexError(
                f"code value {int(arr[row, m])} at row {row}, subspace {m} "
                f"out of range [0, {self.ksub})"
            )
        return arr.astype(np.intp)

    def _subspace_bounds(self, m: int) -> slice:
        if not (0 <= m < self.nsubq):
            raise IndexError(f"subspace {m} out of range [0, {self.nsubq})")
        offset = m * self.dsub
        return slice(offset, offset + self.dsub)

    def subspace(self, vector: np.ndarray, m: int) -> np.ndarray:
        """View of subspace ``m`` of ``vector`` (offset ``m * dsub``, length ``dsub``)."""
        return self.validate_vector(vector)[self._subspace_bounds(m)]

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def assign(self, subvector: np.ndarray, m: int) -> Tuple[int, float]:
        """Nearest centroid of ``subvector`` in subspace ``m``."""
        self._subspace_bounds(m)
        return self.codebooks[m].assign(subvector)

    def encode_with_distances(self, vector: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Encode ``vector`` and return the per-subspace assignment distances."""
        x = self.validate_vector(vector)
        code = np.empty(self.nsubq, dtype=self.code_dtype)
        dists = np.empty(self.nsubq, dtype=np.float64)
        for m, cb in enumerate(self.codebooks):
            code[m], dists[m] = cb.assign(x[self._subspace_bounds(m)])
        code.setflags(write=False)
        return code, dists

    def encode(self, vector: np.ndarray) -> np.ndarray:
        """Code of ``vector``: one centroid index per subspace."""
        code, _ = self.encode_with_distances(vector)
        return code

    def encode_batch(self, vectors: np.ndarray) -> np.ndarray:
        """Codes of every row of ``vectors``, shape ``(n, m)``."""
        x = as_matrix(vectors, "vectors")
        if x.shape[1] != self.dim:
            raise ConfigurationError(
                f"Vector length mismatch: expected {self.dim}, got {x.shape[1]}."
            )
        codes = np.empty((x.shape[0], self.nsubq), dtype=self.code_dtype)
        for m, cb in enumerate(self.codebooks):
            codes[:, m], _ = nearest_centroids(x[:, self._subspace_bounds(m)], cb.centroids)
        codes.setflags(write=False)
        return codes

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, code: np.ndarray) -> np.ndarray:
        """Approximate vector: concatenation of the coded centroids."""
        idx = self.validate_code(code)
        out = np.empty(self.dim, dtype=np.float32)
        for m, cb in enumerate(self.codebooks):
            out[self._subspace_bounds(m)] = cb.centroids[idx[m]]
        return out

    def decode_batch(self, codes: np.ndarray) -> np.ndarray:
        """Approximate vectors for every row of ``codes``, shape ``(n, dim)``."""
        idx = self.validate_codes(codes)
        out = np.empty((idx.shape[0], self.dim), dtype=np.float32)
        for m, cb in enumerate(self.codebooks):
            out[:, self._subspace_bounds(m)] = cb.centroids[idx[:, m]]
        return out

    # ------------------------------------------------------------------
    # Distances
    # ------------------------------------------------------------------

    def distance(self, x: np.ndarray, y: np.ndarray) -> float:
        """Squared distance between two dense vectors, accumulated per subspace.

        Matches both table lookups and the sum of the per-subspace
        distances from :meth:`encode_with_distances` exactly.
        """
        return squared_l2(self.validate_vector(x), self.validate_vector(y), dsub=self.dsub)

    def asymmetric_table(self, query: np.ndarray) -> AsymmetricDistanceTable:
        """Distance table scoring codes against the raw vector ``query``."""
        return AsymmetricDistanceTable(self, query)

    def symmetric_table(self) -> SymmetricDistanceTable:
        """Inter-centroid table scoring codes against codes; built once."""
        if self._symmetric is None:
            self._symmetric = SymmetricDistanceTable(self)
        return self._symmetric

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        return {
            "dim": self.dim,
            "dsub": self.dsub,
            "nsubq": self.nsubq,
            "ksub": self.ksub,
            "nbits": self.nbits,
            "code_size": self.code_size,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "codebooks": [cb.to_dict() for cb in self.codebooks],
            "config": self.config.to_dict() if self.config is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductQuantizer":
        cfg = data.get("config")
        codebooks: List[Codebook] = [Codebook.from_dict(cb) for cb in data["codebooks"]]
        return cls(codebooks, config=PQConfig.from_dict(cfg) if cfg else None)

    def __repr__(self) -> str:
        return (
            f"ProductQuantizer(dim={self.dim} dsub={self.dsub} "
            f"nsubq={self.nsubq} ksub={self.ksub})"
        )
