"""
Tests for the random hyperplane scheme.
"""

import numpy as np
import pytest

from lshsearch import ConfigurationError, ItqParameter, Parameter, RandomHyperplaneScheme, RhpLsh
from lshsearch.codec import UINT


@pytest.fixture
def vectors():
    rng = np.random.default_rng(3)
    return rng.standard_normal(size=(200, 8)).astype(np.float32)


@pytest.fixture
def param():
    return Parameter(M=37, L=3, D=8, N=6)


class TestRandomHyperplane:
    """Test hashing without training."""

    def test_ready_after_reset(self, param):
        """Test that hyperplanes are drawn at reset."""
        scheme = RandomHyperplaneScheme(param, seed=0)
        assert scheme.is_trained
        assert scheme.hyperplanes.shape == (param.L, param.N, param.D)

    def test_train_only_checks_dimension(self, param, vectors):
        """Test that train() learns nothing and only checks the dimension."""
        index = RhpLsh(param, seed=0)
        before = index.scheme.hyperplanes.copy()
        index.train(vectors)
        np.testing.assert_array_equal(index.scheme.hyperplanes, before)
        with pytest.raises(ConfigurationError):
            index.train(np.zeros((5, 3)))

    def test_bits_are_hyperplane_sides(self, param, vectors):
        """Test that each bit is the side of its hyperplane."""
        scheme = RandomHyperplaneScheme(param, seed=0)
        v = vectors[0]
        side = scheme.hyperplanes[1] @ v > 0
        expected = int(scheme.weights[1][side].sum()) % param.M
        assert scheme.hash_value(1, v) == expected

    def test_scaling_does_not_change_bucket(self, param, vectors):
        """Test that scaling a vector keeps its buckets."""
        scheme = RandomHyperplaneScheme(param, seed=0)
        for k in range(param.L):
            assert scheme.hash_value(k, vectors[4]) == scheme.hash_value(k, vectors[4] * 4.0)

    def test_more_bits_than_dimensions(self, vectors):
        """Test that N may exceed D for random hyperplanes."""
        param = Parameter(M=37, L=2, D=8, N=12)
        param.validate()
        index = RhpLsh(param, seed=0).hash(vectors)
        assert index.scheme.hyperplanes.shape == (2, 12, 8)
        assert len(index) == len(vectors)

    def test_rejects_itq_parameters(self):
        """Test that ITQ parameters are rejected."""
        with pytest.raises(ConfigurationError):
            RandomHyperplaneScheme(ItqParameter(M=8, L=1, D=4, N=2, S=5, I=1))

    def test_self_retrieval(self, param, vectors):
        """Test that an indexed vector finds itself."""
        index = RhpLsh(param, seed=0).hash(vectors)
        for key in [0, 50, 199]:
            found = []
            index.query(vectors[key], _ListScanner(found))
            assert key in found


class TestRandomHyperplanePersistence:
    """Test the file layout of the random hyperplane scheme."""

    def test_round_trip(self, param, vectors, tmp_path):
        """Test that save and open restore the index."""
        path = str(tmp_path / "rhp.bin")
        index = RhpLsh(param, seed=0).hash(vectors)
        index.save(path)
        loaded = RhpLsh.open(path)

        assert loaded.param == param
        np.testing.assert_array_equal(loaded.scheme.hyperplanes, index.scheme.hyperplanes)
        np.testing.assert_array_equal(loaded.scheme.weights, index.scheme.weights)
        assert loaded.tables == index.tables

    def test_layout(self, param, vectors, tmp_path):
        """Test the size and header of a saved file."""
        path = str(tmp_path / "rhp.bin")
        index = RhpLsh(param, seed=0).hash(vectors)
        index.save(path)
        words = np.fromfile(path, dtype=UINT)

        assert words[:4].tolist() == [param.M, param.L, param.D, param.N]
        expected = 4
        for table in index.tables:
            expected += param.N + 1 + sum(2 + len(keys) for keys in table.values())
            expected += param.N * param.D
        assert words.size == expected


class _ListScanner:
    def __init__(self, found):
        self.found = found

    def reset(self, query):
        self.found.clear()

    def __call__(self, key):
        self.found.append(key)

    def finalize(self):
        return self.found
