"""QuantizedMatrix — a row matrix stored as product-quantization codes.

Public API
----------
QuantizedMatrix
    .from_matrix()       — train codecs on a dense matrix and encode every row
    .reconstruct()       — approximate row ``i``
    .reconstruct_all()   — approximate dense matrix
    .dot_row()           — inner product of a dense vector with row ``i``
    .add_row_to()        — ``vector += alpha * row(i)`` in place
    .distances()         — squared distance from a query to every row
    .to_bytes() / .from_bytes()
    .save() / .load()
    .stats()             — live statistics dict
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from .distance import as_matrix, as_vector, pairwise_squared_l2
from .errors import ConfigurationError
from .norm import NormSubcodec, split_norms
from .quantizer import ProductQuantizer
from .serialization import CodecArchive, dumps, loads, read_archive, write_archive
from .types import PQConfig

logger = logging.getLogger(__name__)


class QuantizedMatrix:
    """Dense ``rows x dim`` matrix compressed to ``rows`` PQ codes.

    When ``qnorm`` is set the codebooks are trained on unit-length rows and
    every row additionally stores a norm code from a :class:`NormSubcodec`.

    Parameters
    ----------
    pq         : trained product quantizer.
    codes      : ``(rows, nsubq)`` codes.
    norm_codec : norm sub-codec, required together with ``norm_codes``.
    norm_codes : ``(rows,)`` norm codes.
    """

    def __init__(
        self,
        pq: ProductQuantizer,
        codes: np.ndarray,
        norm_codec: Optional[NormSubcodec] = None,
        norm_codes: Optional[np.ndarray] = None,
    ) -> None:
        if norm_codes is not None:
            norm_codes = np.array(norm_codes)
        archive = CodecArchive(
            pq=pq, codes=np.array(codes), norm_codec=norm_codec, norm_codes=norm_codes
        )
        self._archive = archive
        self.pq: ProductQuantizer = archive.pq
        self.codes: np.ndarray = archive.codes
        self.norm_codec: Optional[NormSubcodec] = archive.norm_codec
        self.norm_codes: Optional[np.ndarray] = archive.norm_codes
        self.codes.setflags(write=False)
        if self.norm_codes is not None:
            self.norm_codes.setflags(write=False)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_matrix(
        cls,
        matrix: np.ndarray,
        dsub: int = 2,
        qnorm: bool = False,
        nbits: int = 8,
        niter: int = 25,
        seed: int = 1234,
        max_points_per_cluster: int = 256,
        tol: Optional[float] = None,
    ) -> "QuantizedMatrix":
        """Train codecs on ``matrix`` and encode all of its rows.

        Parameters
        ----------
        matrix                 : dense float matrix, shape ``(rows, dim)``.
        dsub                   : subspace width; must divide ``dim``.
        qnorm                  : quantize row norms separately.
        nbits                  : bits per subspace code (and per norm code).
        niter, seed, max_points_per_cluster, tol : training settings,
                                 see :class:`PQConfig`.
        """
        x = as_matrix(matrix, "matrix")
        rows, dim = x.shape
        config = PQConfig(
            dim=dim,
            dsub=dsub,
            nbits=nbits,
            niter=niter,
            seed=seed,
            max_points_per_cluster=max_points_per_cluster,
            tol=tol,
        )
        norm_codec = None
        norm_codes = None
        if qnorm:
            x, norms = split_norms(x)
            norm_codec = NormSubcodec.train(
                norms,
                nbits=nbits,
                niter=niter,
                seed=seed,
                max_points_per_cluster=max_points_per_cluster,
                tol=tol,
            )
            norm_codes = norm_codec.encode(norms)
        pq = ProductQuantizer.train(x, config)
        codes = pq.encode_batch(x)
        qm = cls(pq, codes, norm_codec=norm_codec, norm_codes=norm_codes)
        logger.info(
            "Quantized %d x %d matrix into %d-byte codes (qnorm=%s)",
            rows, dim, qm.code_size, qnorm,
        )
        return qm

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self.codes.shape[0]

    @property
    def dim(self) -> int:
        return self.pq.dim

    @property
    def qnorm(self) -> bool:
        return self.norm_codec is not None

    @property
    def code_size(self) -> int:
        """Bytes stored per row, norm code included."""
        size = self.pq.code_size
        if self.norm_codec is not None:
            size += self.norm_codec.code_dtype.itemsize
        return size

    def __len__(self) -> int:
        return self.rows

    def _check_row(self, i: int) -> int:
        if not (0 <= i < self.rows):
            raise IndexError(f"row {i} out of range [0, {self.rows})")
        return i

    def _check_dense(self, vector) -> np.ndarray:
        v = as_vector(vector)
        if v.shape[0] != self.dim:
            raise ConfigurationError(
                f"Vector length mismatch: expected {self.dim}, got {v.shape[0]}."
            )
        return v

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def reconstruct(self, i: int) -> np.ndarray:
        """Approximation of row ``i``."""
        self._check_row(i)
        row = self.pq.decode(self.codes[i])
        if self.norm_codec is not None:
            row = self.norm_codec.reconstruct(row, int(self.norm_codes[i]))
        return row

    def reconstruct_all(self) -> np.ndarray:
        """Approximation of the whole matrix, shape ``(rows, dim)``."""
        dense = self.pq.decode_batch(self.codes)
        if self.norm_codec is not None:
            dense = self.norm_codec.reconstruct_batch(dense, self.norm_codes)
        return dense

    def dot_row(self, vector: np.ndarray, i: int) -> float:
        """Inner product of ``vector`` with the approximation of row ``i``."""
        v = self._check_dense(vector)
        row = self.reconstruct(i)
        return float(np.dot(row.astype(np.float64), v.astype(np.float64)))

    def add_row_to(self, vector: np.ndarray, i: int, alpha: float = 1.0) -> np.ndarray:
        """Add ``alpha`` times row ``i`` to ``vector`` in place and return it."""
        if not isinstance(vector, np.ndarray) or vector.dtype != np.float32:
            raise ConfigurationError("add_row_to needs a float32 numpy array to update in place.")
        self._check_dense(vector)
        vector += np.float32(alpha) * self.reconstruct(i)
        return vector

    def distances(self, query: np.ndarray) -> np.ndarray:
        """Squared L2 distance from ``query`` to every stored row, float64.

        Row ``i`` equals ``pq.distance(query, reconstruct(i))``.
        """
        q = self._check_dense(query)
        if self.norm_codec is None:
            return self.pq.asymmetric_table(q).distances(self.codes)
        dense = self.reconstruct_all()
        return pairwise_squared_l2(dense, q[np.newaxis, :], dsub=self.pq.dsub)[:, 0]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        return dumps(self._archive)

    @classmethod
    def from_bytes(cls, data: bytes) -> "QuantizedMatrix":
        archive = loads(data)
        return cls(archive.pq, archive.codes, archive.norm_codec, archive.norm_codes)

    def save(self, path: Union[str, Path]) -> int:
        """Write to ``path``; returns the number of bytes written."""
        return write_archive(path, self._archive)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "QuantizedMatrix":
        archive = read_archive(path)
        return cls(archive.pq, archive.codes, archive.norm_codec, archive.norm_codes)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Return live statistics for logging and reports."""
        dense_bytes = self.rows * self.dim * 4
        stored = self.rows * self.code_size
        return {
            **self.pq.stats(),
            "rows": self.rows,
            "qnorm": self.qnorm,
            "row_code_size": self.code_size,
            "dense_bytes": dense_bytes,
            "code_bytes": stored,
            "compression_ratio": dense_bytes / stored if stored else 0.0,
        }

    def __repr__(self) -> str:
        return (
            f"QuantizedMatrix(rows={self.rows} dim={self.dim} "
            f"nsubq={self.pq.nsubq} ksub={self.pq.ksub} qnorm={self.qnorm})"
        )
