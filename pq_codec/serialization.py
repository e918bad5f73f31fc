"""Binary persistence for trained codebooks and stored codes.

Layout (little-endian, float32 IEEE-754)::

    header   "<4sHHIIIBBI"   magic b"PQCX", version, flags, dim, dsub,
                             nsubq, nbits, norm_nbits, rows
    body     nsubq * ksub * dsub   float32   product-quantizer centroids
             2 ** norm_nbits       float32   norm centroids      (flag bit 0)
             rows * nsubq          uint8 / uint16   codes
             rows                  uint8 / uint16   norm codes   (flag bit 0)

Codes are one byte wide when ``nbits <= 8`` and two bytes otherwise. Any
mismatch between the header and the body length is reported as a
``PersistenceError``; nothing is returned from a partial stream.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from .errors import ConfigurationError, PersistenceError
from .norm import NormSubcodec
from .quantizer import ProductQuantizer
from .types import MAX_NBITS, Codebook

logger = logging.getLogger(__name__)

MAGIC = b"PQCX"
VERSION = 1
FLAG_NORM = 0x1

_HEADER = struct.Struct("<4sHHIIIBBI")


def _wire_code_dtype(nbits: int) -> np.dtype:
    return np.dtype("<u1") if nbits <= 8 else np.dtype("<u2")


@dataclass
class CodecArchive:
    """Everything needed to decode a set of stored vectors.

    pq         : product quantizer (centroids)
    codes      : ``(rows, nsubq)`` codes; ``rows`` may be 0
    norm_codec : optional norm sub-codec
    norm_codes : ``(rows,)`` norm codes, present iff ``norm_codec`` is
    """

    pq: ProductQuantizer
    codes: np.ndarray
    norm_codec: Optional[NormSubcodec] = None
    norm_codes: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.codes = np.asarray(self.codes).reshape(-1, self.pq.nsubq)
        self.pq.validate_codes(self.codes)
        if (self.norm_codec is None) != (self.norm_codes is None):
            raise ConfigurationError("norm_codec and norm_codes must be given together.")
        if self.norm_codec is not None:
            self.norm_codes = np.asarray(self.norm_codes).reshape(-1)
            if self.norm_codes.shape[0] != self.rows:
                raise ConfigurationError(
                    f"Expected {self.rows} norm codes, got {self.norm_codes.shape[0]}."
                )
            self.norm_codec.pq.validate_codes(self.norm_codes[:, np.newaxis])

    @property
    def rows(self) -> int:
        return self.codes.shape[0]

    @property
    def has_norm(self) -> bool:
        return self.norm_codec is not None


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def dumps(archive: CodecArchive) -> bytes:
    """Serialize ``archive`` to bytes."""
    pq = archive.pq
    flags = FLAG_NORM if archive.has_norm else 0
    norm_nbits = archive.norm_codec.nbits if archive.has_norm else 0
    parts = [
        _HEADER.pack(
            MAGIC, VERSION, flags, pq.dim, pq.dsub, pq.nsubq,
            pq.nbits, norm_nbits, archive.rows,
        ),
        pq.centroids.astype("<f4").tobytes(),
    ]
    if archive.has_norm:
        parts.append(archive.norm_codec.codebook.centroids.astype("<f4").tobytes())
    parts.append(archive.codes.astype(_wire_code_dtype(pq.nbits)).tobytes())
    if archive.has_norm:
        parts.append(archive.norm_codes.astype(_wire_code_dtype(norm_nbits)).tobytes())
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


class _Reader:
    """Sequential reader over a bytes buffer with length checks."""

    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.pos = 0

    def take(self, nbytes: int, what: str) -> memoryview:
        end = self.pos + nbytes
        if end > len(self.data):
            raise PersistenceError(
                f"Truncated archive reading {what}: need {nbytes} bytes at offset "
                f"{self.pos}, only {len(self.data) - self.pos} left."
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def array(self, dtype: np.dtype, count: int, what: str) -> np.ndarray:
        raw = self.take(count * dtype.itemsize, what)
        if count == 0:
            return np.empty(0, dtype=dtype)
        return np.frombuffer(raw, dtype=dtype, count=count)


def loads(data: bytes) -> CodecArchive:
    """Deserialize an archive written by :func:`dumps`."""
    reader = _Reader(data)
    (magic, version, flags, dim, dsub, nsubq,
     nbits, norm_nbits, rows) = _HEADER.unpack(reader.take(_HEADER.size, "header"))
    if magic != MAGIC:
        raise PersistenceError(f"Bad magic {magic!r}, expected {MAGIC!r}.")
    if version != VERSION:
        raise PersistenceError(f"Unsupported archive version {version}, expected {VERSION}.")
    if flags & ~FLAG_NORM:
        raise PersistenceError(f"Unknown flags 0x{flags:x}.")
    if dsub == 0 or nsubq == 0 or dim != dsub * nsubq:
        raise PersistenceError(
            f"Inconsistent header: dim={dim}, dsub={dsub}, nsubq={nsubq}."
        )
    if nbits > MAX_NBITS or norm_nbits > MAX_NBITS:
        raise PersistenceError(
            f"Code width out of range: nbits={nbits}, norm_nbits={norm_nbits}."
        )
    has_norm = bool(flags & FLAG_NORM)
    ksub = 1 << nbits

    expected = nsubq * ksub * dsub * 4 + rows * nsubq * _wire_code_dtype(nbits).itemsize
    if has_norm:
        expected += (1 << norm_nbits) * 4 + rows * _wire_code_dtype(norm_nbits).itemsize
    actual = len(reader.data) - reader.pos
    if actual != expected:
        raise PersistenceError(
            f"Archive body length mismatch: header describes {expected} bytes, got {actual}."
        )

    centroids = reader.array(np.dtype("<f4"), nsubq * ksub * dsub, "centroids")
    pq = ProductQuantizer(
        [Codebook(sub) for sub in centroids.astype(np.float32).reshape(nsubq, ksub, dsub)]
    )
    norm_codec = None
    if has_norm:
        norm_centroids = reader.array(np.dtype("<f4"), 1 << norm_nbits, "norm centroids")
        norm_codec = NormSubcodec.from_centroids(norm_centroids.astype(np.float32))
    codes = reader.array(_wire_code_dtype(nbits), rows * nsubq, "codes")
    codes = codes.astype(pq.code_dtype).reshape(rows, nsubq)
    norm_codes = None
    if has_norm:
        norm_codes = reader.array(_wire_code_dtype(norm_nbits), rows, "norm codes")
        norm_codes = norm_codes.astype(norm_codec.code_dtype)
    try:
        return CodecArchive(pq=pq, codes=codes, norm_codec=norm_codec, norm_codes=norm_codes)
    except IndexError as err:
        raise PersistenceError(f"Corrupt code stream: {err}") from err


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def write_archive(path: Union[str, Path], archive: CodecArchive) -> int:
    """Write ``archive`` to ``path``; returns the number of bytes written."""
    payload = dumps(archive)
    Path(path).write_bytes(payload)
    logger.info("Wrote %d codes (%d bytes) to %s", archive.rows, len(payload), path)
    return len(payload)


def read_archive(path: Union[str, Path]) -> CodecArchive:
    """Read an archive written by :func:`write_archive`."""
    archive = loads(Path(path).read_bytes())
    logger.info("Read %d codes from %s", archive.rows, path)
    return archive
