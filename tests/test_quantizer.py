"""Unit tests for pq_codec.quantizer.ProductQuantizer."""

import numpy as np
import pytest

from pq_codec.distance import squared_l2
from pq_codec.errors import ConfigurationError
from pq_codec.quantizer import ProductQuantizer
from pq_codec.types import Codebook, PQConfig

DIM = 8
DSUB = 2


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def data():
    return np.random.default_rng(0).standard_normal((500, DIM)).astype(np.float32)


@pytest.fixture
def pq(data):
    return ProductQuantizer.train(data, PQConfig(dim=DIM, dsub=DSUB, nbits=4, niter=8))


def _scenario_pq() -> ProductQuantizer:
    return ProductQuantizer.from_centroids(
        np.array([[[0, 0, 0, 0], [10, 10, 10, 10]]], dtype=np.float32)
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_trained_shape(pq):
    assert pq.dim == DIM
    assert pq.dsub == DSUB
    assert pq.nsubq == DIM // DSUB
    assert pq.ksub == 16
    assert pq.nbits == 4
    assert pq.code_size == 4
    assert pq.centroids.shape == (4, 16, 2)


def test_empty_codebooks_rejected():
    with pytest.raises(ConfigurationError, match="at least one"):
        ProductQuantizer([])


def test_mismatched_codebooks_rejected():
    a = Codebook(np.zeros((2, 2), dtype=np.float32))
    b = Codebook(np.zeros((4, 2), dtype=np.float32))
    with pytest.raises(ConfigurationError, match="Codebook 1"):
        ProductQuantizer([a, b])


def test_config_mismatch_rejected():
    cb = Codebook(np.zeros((2, 2), dtype=np.float32))
    with pytest.raises(ConfigurationError, match="does not match"):
        ProductQuantizer([cb], config=PQConfig(dim=4, dsub=2))


def test_retrain_returns_new_instance(pq, data):
    pq2 = pq.retrain(data[::-1])
    assert pq2 is not pq
    assert pq2.config == pq.config
    assert all(a is not b for a, b in zip(pq.codebooks, pq2.codebooks))


def test_retrain_needs_config():
    with pytest.raises(ConfigurationError, match="without a PQConfig"):
        _scenario_pq().retrain(np.zeros((4, 4), dtype=np.float32))


def test_to_dict_round_trip(pq):
    pq2 = ProductQuantizer.from_dict(pq.to_dict())
    np.testing.assert_array_equal(pq2.centroids, pq.centroids)
    assert pq2.config == pq.config


# ---------------------------------------------------------------------------
# Assign / encode
# ---------------------------------------------------------------------------


def test_known_scenario():
    pq = _scenario_pq()
    assert pq.assign(np.array([1, 1, 1, 1], dtype=np.float32), 0) == (0, pytest.approx(4.0))
    code, dists = pq.encode_with_distances([8, 8, 8, 8])
    assert code.tolist() == [1]
    assert dists[0] == pytest.approx(16.0)


def test_assign_bad_subspace(pq):
    with pytest.raises(IndexError, match="subspace 4"):
        pq.assign(np.zeros(DSUB, dtype=np.float32), 4)


def test_subspace_view(pq):
    v = np.arange(DIM, dtype=np.float32)
    np.testing.assert_array_equal(pq.subspace(v, 1), [2, 3])
    with pytest.raises(IndexError):
        pq.subspace(v, -1)


def test_encode_dtype_and_read_only(pq, data):
    code = pq.encode(data[0])
    assert code.dtype == np.uint8
    assert code.shape == (DIM // DSUB,)
    with pytest.raises(ValueError):
        code[0] = 1


def test_encode_length_mismatch(pq):
    with pytest.raises(ConfigurationError, match="expected 8, got 7"):
        pq.encode(np.zeros(DIM - 1, dtype=np.float32))


def test_encode_batch_matches_encode(pq, data):
    codes = pq.encode_batch(data[:50])
    assert codes.shape == (50, DIM // DSUB)
    for row, v in zip(codes, data[:50]):
        np.testing.assert_array_equal(row, pq.encode(v))


def test_encode_batch_width_mismatch(pq):
    with pytest.raises(ConfigurationError, match="expected 8, got 4"):
        pq.encode_batch(np.zeros((3, 4), dtype=np.float32))


def test_encode_wide_codes():
    centroids = np.arange(512, dtype=np.float32).reshape(1, 512, 1)
    pq = ProductQuantizer.from_centroids(centroids)
    assert pq.nbits == 9
    code = pq.encode([300.2])
    assert code.dtype == np.uint16
    assert code.tolist() == [300]


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def test_decode_concatenates_centroids(pq):
    code = np.array([0, 1, 2, 3], dtype=np.uint8)
    out = pq.decode(code)
    for m in range(pq.nsubq):
        np.testing.assert_array_equal(
            out[m * DSUB:(m + 1) * DSUB], pq.codebooks[m].centroid(int(code[m]))
        )


def test_round_trip_error_equals_assignment_distances(pq, data):
    for v in data[:200]:
        code, dists = pq.encode_with_distances(v)
        assert dists.dtype == np.float64
        assert squared_l2(pq.decode(code), v, dsub=DSUB) == sum(dists)
        assert pq.distance(v, pq.decode(code)) == sum(dists)


def test_distance_matches_blocked_kernel(pq, data):
    a, b = data[0], data[1]
    assert pq.distance(a, b) == squared_l2(a, b, dsub=DSUB)
    with pytest.raises(ConfigurationError, match="expected 8, got 3"):
        pq.distance(a, b[:3])


def test_reencode_is_idempotent(pq, data):
    for v in data[:50]:
        code = pq.encode(v)
        np.testing.assert_array_equal(pq.encode(pq.decode(code)), code)


def test_decode_batch_matches_decode(pq, data):
    codes = pq.encode_batch(data[:10])
    dense = pq.decode_batch(codes)
    for row, code in zip(dense, codes):
        np.testing.assert_array_equal(row, pq.decode(code))


def test_decode_length_mismatch(pq):
    with pytest.raises(ConfigurationError, match="expected 4"):
        pq.decode(np.zeros(3, dtype=np.uint8))


def test_decode_value_out_of_range(pq):
    with pytest.raises(IndexError, match="subspace 2"):
        pq.decode(np.array([0, 0, 16, 0]))


def test_decode_batch_value_out_of_range(pq):
    codes = np.zeros((2, 4), dtype=np.int64)
    codes[1, 3] = 99
    with pytest.raises(IndexError, match="row 1, subspace 3"):
        pq.decode_batch(codes)


def test_decode_rejects_float_codes(pq):
    with pytest.raises(ConfigurationError, match="integer dtype"):
        pq.decode(np.array([0.0, 1.0, 2.9, 3.0]))


def test_decode_batch_rejects_float_codes(pq):
    with pytest.raises(ConfigurationError, match="integer dtype, got float32"):
        pq.decode_batch(np.zeros((2, 4), dtype=np.float32))


def test_tables_reject_float_codes(pq):
    table = pq.asymmetric_table(np.zeros(DIM, dtype=np.float32))
    with pytest.raises(ConfigurationError, match="integer dtype"):
        table.distance(np.array([0.5, 0.0, 0.0, 0.0]))


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def test_stats(pq):
    s = pq.stats()
    assert s["dim"] == DIM
    assert s["nsubq"] == 4
    assert s["ksub"] == 16
    assert s["code_size"] == 4


def test_repr(pq):
    r = repr(pq)
    assert "ProductQuantizer" in r
    assert "dim=8" in r
