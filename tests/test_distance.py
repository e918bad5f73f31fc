"""Unit tests for pq_codec.distance."""

import numpy as np
import pytest

from pq_codec.distance import (
    ordered_sum,
    pairwise_squared_l2,
    squared_l2,
    squared_l2_batch,
    squared_l2_to_many,
)
from pq_codec.errors import ConfigurationError



# ---------------------------------------------------------------------------
# squared_l2
# ---------------------------------------------------------------------------


def test_squared_l2_known():
    a = np.array([0.0, 0.0])
    b = np.array([3.0, 4.0])
    assert squared_l2(a, b) == pytest.approx(25.0)


def test_squared_l2_identical_is_zero():
    a = np.array([1.5, -2.0, 3.25], dtype=np.float32)
    assert squared_l2(a, a) == 0.0


def test_squared_l2_symmetric():
    rng = np.random.default_rng(0)
    a = rng.standard_normal(16).astype(np.float32)
    b = rng.standard_normal(16).astype(np.float32)
    assert squared_l2(a, b) == squared_l2(b, a)


def test_squared_l2_returns_float():
    assert isinstance(squared_l2([1.0], [2.0]), float)


def test_squared_l2_length_mismatch():
    with pytest.raises(ConfigurationError, match="expected 3, got 2"):
        squared_l2([1.0, 2.0, 3.0], [1.0, 2.0])


def test_squared_l2_rejects_matrix():
    with pytest.raises(ConfigurationError, match="1-D"):
        squared_l2(np.zeros((2, 2)), np.zeros((2, 2)))


def test_configuration_error_is_value_error():
    with pytest.raises(ValueError):
        squared_l2([1.0], [1.0, 2.0])


# ---------------------------------------------------------------------------
# Batched kernels
# ---------------------------------------------------------------------------


def test_to_many_matches_scalar_kernel():
    rng = np.random.default_rng(1)
    x = rng.standard_normal(8).astype(np.float32)
    c = rng.standard_normal((5, 8)).astype(np.float32)
    many = squared_l2_to_many(x, c)
    assert many.dtype == np.float64
    assert many.shape == (5,)
    for i in range(5):
        assert many[i] == squared_l2(x, c[i])


def test_batch_matches_to_many():
    rng = np.random.default_rng(2)
    pts = rng.standard_normal((7, 4)).astype(np.float32)
    c = rng.standard_normal((3, 4)).astype(np.float32)
    batch = squared_l2_batch(pts, c)
    assert batch.shape == (7, 3)
    for i in range(7):
        np.testing.assert_array_equal(batch[i], squared_l2_to_many(pts[i], c))


def test_batch_width_mismatch():
    with pytest.raises(ConfigurationError, match="Width mismatch"):
        squared_l2_batch(np.zeros((2, 3)), np.zeros((2, 4)))


def test_pairwise_diagonal_zero():
    c = np.arange(12, dtype=np.float32).reshape(4, 3)
    table = pairwise_squared_l2(c, c)
    assert table.shape == (4, 4)
    np.testing.assert_array_equal(np.diag(table), np.zeros(4))
    np.testing.assert_array_equal(table, table.T)
    assert table[0, 1] == pytest.approx(27.0)


# ---------------------------------------------------------------------------
# Accumulation order
# ---------------------------------------------------------------------------


def test_ordered_sum_matches_builtin_sum():
    values = np.random.default_rng(3).random((4, 37)) * 1e3
    got = ordered_sum(values)
    for row, total in zip(values, got):
        assert total == sum(row.tolist())


def test_ordered_sum_is_left_to_right():
    # Left to right, both 1.0 terms are absorbed by 1e16.
    values = np.array([1e16, 1.0, 1.0, -1e16])
    assert ordered_sum(values) == 0.0


def test_squared_l2_is_exact_float64_squares():
    a = np.array([0.1, 0.2, 0.3], dtype=np.float32)
    b = np.zeros(3, dtype=np.float32)
    expected = sum(float(v) * float(v) for v in a)
    assert squared_l2(a, b) == expected


def test_blocked_kernel_sums_partials_in_block_order():
    rng = np.random.default_rng(4)
    a = rng.standard_normal(12).astype(np.float32)
    b = rng.standard_normal(12).astype(np.float32)
    partials = [squared_l2(a[s:s + 3], b[s:s + 3]) for s in range(0, 12, 3)]
    assert squared_l2(a, b, dsub=3) == sum(partials)


def test_blocked_batch_matches_scalar():
    rng = np.random.default_rng(5)
    pts = rng.standard_normal((6, 8)).astype(np.float32)
    c = rng.standard_normal((4, 8)).astype(np.float32)
    batch = pairwise_squared_l2(pts, c, dsub=2)
    assert batch.dtype == np.float64
    for i in range(6):
        for j in range(4):
            assert batch[i, j] == squared_l2(pts[i], c[j], dsub=2)


def test_dsub_must_divide_width():
    with pytest.raises(ConfigurationError, match="not a multiple of dsub 3"):
        squared_l2(np.zeros(8), np.zeros(8), dsub=3)


def test_wide_vectors_accumulate_accurately():
    width = 4096
    a = np.full(width, 0.1, dtype=np.float32)
    b = np.zeros(width, dtype=np.float32)
    expected = width * float(np.float32(0.1)) ** 2
    assert squared_l2(a, b) == pytest.approx(expected, rel=1e-12)
