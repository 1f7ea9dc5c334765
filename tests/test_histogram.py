import numpy as np
import pytest

from hepfit.histogram import Binning, Histogram1D


class TestBinning:
    def test_uniform(self):
        binning = Binning.uniform(4, 0, 2)
        np.testing.assert_allclose(binning.edges, [0.0, 0.5, 1.0, 1.5, 2.0])
        np.testing.assert_allclose(binning.centers, [0.25, 0.75, 1.25, 1.75])
        np.testing.assert_allclose(binning.widths, np.full(4, 0.5))

    def test_log(self):
        binning = Binning.log(3, 1.0, 1000.0)
        np.testing.assert_allclose(binning.edges, [1.0, 10.0, 100.0, 1000.0])

    def test_from_edges(self):
        binning = Binning.from_edges([0.0, 1.0, 3.0])
        assert binning.nbins == 2
        np.testing.assert_allclose(binning.widths, [1.0, 2.0])

    @pytest.mark.parametrize("args", [(0, 0.0, 1.0), (10, 1.0, 1.0), (10, 2.0, 1.0)])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            Binning(*args)

    def test_log_needs_positive_edge(self):
        with pytest.raises(ValueError):
            Binning.log(10, 0.0, 10.0)

    def test_edges_must_increase(self):
        with pytest.raises(ValueError):
            Binning.from_edges([0.0, 2.0, 1.0])


class TestHistogram1D:
    def test_fill_with_flow(self):
        hist = Histogram1D(Binning.uniform(2, 0.0, 2.0))
        hist.fill(np.array([-1.0, 0.5, 1.5, 1.5, 2.0, 3.0]))
        np.testing.assert_array_equal(hist.counts, [1.0, 2.0])
        assert hist.underflow == 1.0
        assert hist.overflow == 2.0
        assert hist.entries == 6
        assert hist.integral() == 3.0
        assert hist.integral(include_flow=True) == 6.0

    def test_weights(self):
        hist = Histogram1D(Binning.uniform(1, 0.0, 1.0))
        hist.fill(np.array([0.2, 0.4]), weights=np.array([2.0, 3.0]))
        assert hist.counts[0] == 5.0
        assert hist.sumw2[0] == 13.0
        assert hist.errors()[0] == pytest.approx(np.sqrt(13.0))

    def test_weight_shape_mismatch(self):
        hist = Histogram1D(Binning.uniform(1, 0.0, 1.0))
        with pytest.raises(ValueError):
            hist.fill(np.array([0.2, 0.4]), weights=np.array([1.0]))

    def test_per_event_weights_for_collections(self):
        hist = Histogram1D(Binning.uniform(2, 0.0, 2.0))
        hist.fill(np.array([[0.5, 1.5], [0.5, 0.5]]), weights=np.array([1.0, 2.0]))
        np.testing.assert_array_equal(hist.counts, [5.0, 1.0])

    def test_moments(self):
        hist = Histogram1D(Binning.uniform(10, 0.0, 10.0))
        hist.fill(np.array([2.0, 4.0]))
        assert hist.mean() == pytest.approx(3.0)
        assert hist.std() == pytest.approx(1.0)

    def test_empty_moments(self):
        hist = Histogram1D(Binning.uniform(10, 0.0, 10.0))
        assert np.isnan(hist.mean())

    def test_add(self):
        binning = Binning.uniform(2, 0.0, 2.0)
        a, b = Histogram1D(binning), Histogram1D(binning)
        a.fill(np.array([0.5]))
        b.fill(np.array([1.5, 1.5]))
        total = a + b
        np.testing.assert_array_equal(total.counts, [1.0, 2.0])
        np.testing.assert_array_equal(a.counts, [1.0, 0.0])

    def test_add_incompatible(self):
        a = Histogram1D(Binning.uniform(2, 0.0, 2.0))
        b = Histogram1D(Binning.uniform(3, 0.0, 2.0))
        with pytest.raises(ValueError):
            a += b

    def test_scale(self):
        hist = Histogram1D(Binning.uniform(1, 0.0, 1.0))
        hist.fill(np.array([0.5, 0.5]))
        hist.scale(0.5)
        assert hist.counts[0] == 1.0
        assert hist.sumw2[0] == 0.5

    def test_plot(self):
        hist = Histogram1D(Binning.log(10, 0.1, 100.0), title="spectrum")
        hist.fill(np.array([1.0, 10.0]))
        ax = hist.plot(logx=True, logy=True)
        assert ax.get_xscale() == "log"
        assert ax.get_title() == "spectrum"
