"""Precomputed distance tables for scoring codes without decoding them.

AsymmetricDistanceTable — built per query vector; ``(m, k)`` entries
SymmetricDistanceTable  — built once per quantizer; ``(m, k, k)`` entries

Entries are the float64 per-subspace partials of the distance kernel, and a
lookup sums them in subspace order, so every result equals
``squared_l2(x, y, dsub=pq.dsub)`` on the decoded vectors exactly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .distance import as_vector, ordered_sum, pairwise_squared_l2
from .errors import ConfigurationError

if TYPE_CHECKING:
    from .quantizer import ProductQuantizer

# Largest k for which a k x k table per subspace is built.
MAX_SYMMETRIC_KSUB: int = 4096


def _lookup(table: np.ndarray, codes: np.ndarray) -> np.ndarray:
    """Sum ``table[m, codes[:, m]]`` over subspaces for a batch of codes."""
    nsubq = table.shape[0]
    return ordered_sum(table[np.arange(nsubq), codes])


class AsymmetricDistanceTable:
    """Distances from one raw query vector to every centroid.

    Parameters
    ----------
    pq    : ProductQuantizer whose codes will be scored.
    query : float vector of length ``pq.dim``.
    """

    def __init__(self, pq: "ProductQuantizer", query: np.ndarray) -> None:
        self.pq = pq
        q = as_vector(query, "query")
        if q.shape[0] != pq.dim:
            raise ConfigurationError(
                f"Query length mismatch: expected {pq.dim}, got {q.shape[0]}."
            )
        table = np.empty((pq.nsubq, pq.ksub), dtype=np.float64)
        for m, cb in enumerate(pq.codebooks):
            table[m] = cb.distances(pq.subspace(q, m))
        table.setflags(write=False)
        self.table: np.ndarray = table

    def distance(self, code: np.ndarray) -> float:
        """Squared distance between the query and one code."""
        idx = self.pq.validate_code(code)
        return float(_lookup(self.table, idx[np.newaxis, :])[0])

    def distances(self, codes: np.ndarray) -> np.ndarray:
        """Squared distances between the query and every row of ``codes``."""
        idx = self.pq.validate_codes(codes)
        return _lookup(self.table, idx)

    def __repr__(self) -> str:
        return f"AsymmetricDistanceTable(nsubq={self.pq.nsubq} ksub={self.pq.ksub})"


class SymmetricDistanceTable:
    """Inter-centroid distances of every subspace of one quantizer.

    Built once and reused for any number of code-to-code comparisons; no
    vector arithmetic happens at query time.
    """

    def __init__(self, pq: "ProductQuantizer") -> None:
        if pq.ksub > MAX_SYMMETRIC_KSUB:
            raise ConfigurationError(
                f"Symmetric tables need ksub <= {MAX_SYMMETRIC_KSUB}, got {pq.ksub}."
            )
        self.pq = pq
        table = np.empty((pq.nsubq, pq.ksub, pq.ksub), dtype=np.float64)
        for m, cb in enumerate(pq.codebooks):
            table[m] = pairwise_squared_l2(cb.centroids, cb.centroids)
        table.setflags(write=False)
        self.table: np.ndarray = table

    def distance(self, a: np.ndarray, b: np.ndarray) -> float:
        """Squared distance between two codes."""
        ia = self.pq.validate_code(a)
        ib = self.pq.validate_code(b)
        m = np.arange(self.pq.nsubq)
        return float(ordered_sum(self.table[m, ia, ib]))

    def distances(self, a: np.ndarray, codes: np.ndarray) -> np.ndarray:
        """Squared distances from code ``a`` to every row of ``codes``."""
        ia = self.pq.validate_code(a)
        ib = self.pq.validate_codes(codes)
        m = np.arange(self.pq.nsubq)
        return ordered_sum(self.table[m, ia, ib])

    def __repr__(self) -> str:
        return f"SymmetricDistanceTable(nsubq={self.pq.nsubq} ksub={self.pq.ksub})"
