"""Error and warning types raised by pq-codec.

ConfigurationError        — invalid shapes, widths or parameters (fatal)
PersistenceError          — malformed or truncated serialized archives (fatal)
DegenerateTrainingWarning — training finished but some centroids are unsupported
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A vector, code or parameter does not match the codec configuration."""


class PersistenceError(ValueError):
    """A serialized codec archive could not be decoded."""


class DegenerateTrainingWarning(UserWarning):
    """Training produced centroids that no training point supports."""
