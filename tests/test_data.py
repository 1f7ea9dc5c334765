import numpy as np
import pytest

from hepfit.data import DataHist, Dataset
from hepfit.dataframe import DataFrame
from hepfit.histogram import Binning, Histogram1D
from hepfit.models import RealVar


@pytest.fixture
def y():
    return RealVar("y", 0.0, 0.0, 10.0)


class TestDataset:
    def test_out_of_range_entries_are_dropped(self, x):
        data = Dataset([x], {"x": [-20.0, -10.0, 0.0, 10.0, 20.0]})
        np.testing.assert_array_equal(data["x"], [-10.0, 0.0, 10.0])
        assert len(data) == 3

    def test_weights_follow_the_selection(self, x):
        data = Dataset([x], {"x": [0.0, 50.0, 1.0]}, weights=[1.0, 2.0, 3.0])
        assert data.is_weighted
        np.testing.assert_array_equal(data.weights, [1.0, 3.0])
        assert data.sum_weights() == 4.0
        assert data.sum_weights2() == 10.0

    def test_unweighted_weights_are_ones(self, x):
        data = Dataset([x], {"x": [0.0, 1.0]})
        assert not data.is_weighted
        np.testing.assert_array_equal(data.weights, [1.0, 1.0])

    def test_missing_column(self, x, y):
        with pytest.raises(KeyError):
            Dataset([x, y], {"x": [0.0]})

    def test_length_mismatch(self, x, y):
        with pytest.raises(ValueError):
            Dataset([x, y], {"x": [0.0], "y": [1.0, 2.0]})
        with pytest.raises(ValueError):
            Dataset([x], {"x": [0.0]}, weights=[1.0, 2.0])

    def test_from_arrays_sequence(self, x, y):
        data = Dataset.from_arrays([x, y], [[1.0, 2.0], [3.0, 4.0]])
        assert data.names == ["x", "y"]
        np.testing.assert_array_equal(data["y"], [3.0, 4.0])

    def test_unknown_observable(self, x):
        data = Dataset([x], {"x": [0.0]})
        with pytest.raises(KeyError):
            data["y"]
        assert "x" in data
        assert "y" not in data

    def test_reduce_with_expression(self, x, y):
        data = Dataset([x, y], {"x": [0.0, 1.0, 2.0], "y": [5.0, 6.0, 7.0]}, weights=[1.0, 2.0, 3.0])
        reduced = data.reduce("x > 0.5 && y < 6.5", name="cut")
        np.testing.assert_array_equal(reduced["x"], [1.0])
        np.testing.assert_array_equal(reduced.weights, [2.0])
        assert reduced.name == "cut"
        assert data.num_entries() == 3

    def test_reduce_with_callable_and_mask(self, x):
        data = Dataset([x], {"x": [0.0, 1.0, 2.0]})
        assert data.reduce(lambda c: c["x"] > 0.5).num_entries() == 2
        assert data.reduce(np.array([True, False, False])).num_entries() == 1

    def test_reduce_unknown_column(self, x):
        data = Dataset([x], {"x": [0.0]})
        with pytest.raises(KeyError):
            data.reduce("z > 1")

    def test_append(self, x):
        a = Dataset([x], {"x": [0.0]})
        b = Dataset([x], {"x": [1.0, 2.0]}, weights=[0.5, 0.5])
        a.append(b)
        np.testing.assert_array_equal(a["x"], [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(a.weights, [1.0, 0.5, 0.5])

    def test_append_different_observables(self, x, y):
        with pytest.raises(ValueError):
            Dataset([x], {"x": [0.0]}).append(Dataset([y], {"y": [0.0]}))

    def test_from_dataframe(self, x):
        df = DataFrame.from_arrays({"x": np.array([-1.0, 0.5, 30.0]), "w": np.array([1.0, 2.0, 3.0])})
        data = Dataset.from_dataframe(df.filter("x < 20"), [x], weight="w")
        np.testing.assert_array_equal(data["x"], [-1.0, 0.5])
        np.testing.assert_array_equal(data.weights, [1.0, 2.0])

    def test_binned(self, y):
        data = Dataset([y], {"y": [0.5, 1.5, 1.6, 9.9]})
        hist = data.binned(bins=10)
        np.testing.assert_array_equal(hist.counts[:2], [1.0, 2.0])
        assert hist.sum_weights() == 4.0


class TestDataHist:
    def test_centers_and_weights(self, y):
        hist = DataHist(y, Binning.uniform(2, 0.0, 10.0), [3.0, 4.0])
        np.testing.assert_array_equal(hist["y"], [2.5, 7.5])
        np.testing.assert_array_equal(hist.weights, [3.0, 4.0])
        assert hist.num_entries() == 2
        assert not hist.is_weighted

    def test_binning_outside_range(self, y):
        with pytest.raises(ValueError):
            DataHist(y, Binning.uniform(2, -1.0, 10.0), [1.0, 1.0])

    def test_wrong_number_of_counts(self, y):
        with pytest.raises(ValueError):
            DataHist(y, Binning.uniform(2, 0.0, 10.0), [1.0])

    def test_histogram_conversion(self, y):
        h = Histogram1D(Binning.uniform(5, 0.0, 10.0), name="h")
        h.fill(np.array([1.0, 1.0, 7.0]), weights=np.array([1.0, 2.0, 1.0]))
        hist = DataHist.from_histogram(y, h)
        assert hist.is_weighted
        assert hist.sum_weights2() == 6.0
        back = hist.to_histogram()
        np.testing.assert_array_equal(back.counts, h.counts)
