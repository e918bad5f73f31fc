"""pq-codec — Product Quantization codec for float32 embedding vectors.

Compresses vectors into fixed-width byte codes by nearest-centroid
assignment against per-subspace codebooks, and reconstructs approximate
vectors or approximate distances from those codes.

Public API::

    from pq_codec import PQConfig, ProductQuantizer, QuantizedMatrix
"""

from .clustering import KMeansResult, kmeans, train_codebooks
from .distance import ordered_sum, pairwise_squared_l2, squared_l2, squared_l2_to_many
from .errors import ConfigurationError, DegenerateTrainingWarning, PersistenceError
from .norm import NormSubcodec, split_norms
from .qmatrix import QuantizedMatrix
from .quantizer import ProductQuantizer
from .serialization import CodecArchive, dumps, loads, read_archive, write_archive
from .tables import AsymmetricDistanceTable, SymmetricDistanceTable
from .types import Codebook, PQConfig

__version__ = "0.1.0"
__all__ = [
    "AsymmetricDistanceTable",
    "Codebook",
    "CodecArchive",
    "ConfigurationError",
    "DegenerateTrainingWarning",
    "KMeansResult",
    "NormSubcodec",
    "PQConfig",
    "PersistenceError",
    "ProductQuantizer",
    "QuantizedMatrix",
    "SymmetricDistanceTable",
    "dumps",
    "kmeans",
    "loads",
    "ordered_sum",
    "pairwise_squared_l2",
    "read_archive",
    "split_norms",
    "squared_l2",
    "squared_l2_to_many",
    "train_codebooks",
    "write_archive",
]
