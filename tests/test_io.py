import numpy as np
import pytest

from hepfit import __version__
from hepfit.data import Dataset
from hepfit.fitting import fit
from hepfit.histogram import Binning, Histogram1D
from hepfit.io import ResultsIO


class TestResultsIO:
    def test_dataset(self, gauss, rng, tmp_path):
        path = str(tmp_path / "results.h5")
        data = gauss.generate(100, rng=rng)
        weighted = Dataset([gauss.x], {"x": data["x"]}, weights=np.linspace(0.5, 1.5, 100), name="weighted")
        ResultsIO.save_dataset(weighted, path)

        loaded = ResultsIO.load_dataset(path)
        assert loaded.name == "weighted"
        assert loaded.observables[0].range == gauss.x.range
        np.testing.assert_array_equal(loaded["x"], weighted["x"])
        np.testing.assert_array_equal(loaded.weights, weighted.weights)

        attached = ResultsIO.load_dataset(path, observables=[gauss.x])
        assert attached.observables[0] is gauss.x

    def test_histogram(self, tmp_path):
        path = str(tmp_path / "results.h5")
        hist = Histogram1D(Binning.log(10, 0.25, 300.0), name="Dimuon_mass", title="Dimuon mass")
        hist.fill(np.array([0.1, 1.0, 3.1, 91.0, 500.0]))
        ResultsIO.save_histogram(hist, path)

        loaded = ResultsIO.load_histogram(path, "Dimuon_mass")
        np.testing.assert_array_equal(loaded.counts, hist.counts)
        np.testing.assert_allclose(loaded.edges, hist.edges)
        assert (loaded.underflow, loaded.overflow, loaded.entries) == (1.0, 1.0, 5)
        assert loaded.title == "Dimuon mass"
        assert loaded.mean() == pytest.approx(hist.mean())

    def test_fit_result(self, gauss, rng, tmp_path):
        path = str(tmp_path / "results.h5")
        result = fit(gauss, gauss.generate(1000, rng=rng))
        ResultsIO.save_fit_result(result, path, key="gauss")

        loaded = ResultsIO.load_fit_result(path, key="gauss")
        assert loaded.parameter_names == result.parameter_names
        np.testing.assert_array_equal(loaded.values, result.values)
        np.testing.assert_array_equal(loaded.covariance, result.covariance)
        assert loaded.status == result.status
        assert loaded.options == result.options

    def test_several_objects_share_a_file(self, tmp_path):
        path = str(tmp_path / "results.h5")
        hist = Histogram1D(Binning.uniform(2, 0.0, 1.0), name="a")
        ResultsIO.save_histogram(hist, path)
        ResultsIO.save_histogram(hist, path, key="b")
        ResultsIO.save_histogram(hist, path, key="b")
        assert ResultsIO.load_histogram(path, "a").binning.nbins == 2
        assert ResultsIO.load_histogram(path, "b").binning.nbins == 2
        assert ResultsIO.file_version(path) == __version__

    def test_wrong_kind(self, tmp_path):
        path = str(tmp_path / "results.h5")
        ResultsIO.save_histogram(Histogram1D(Binning.uniform(2, 0.0, 1.0), name="h"), path)
        with pytest.raises(ValueError):
            ResultsIO.load_fit_result(path, key="h")
        with pytest.raises(ValueError):
            ResultsIO.load_histogram(path, key="missing")

    def test_not_hdf5(self, tmp_path):
        path = tmp_path / "plain.txt"
        path.write_text("not hdf5")
        with pytest.raises(ValueError):
            ResultsIO.load_dataset(str(path))
