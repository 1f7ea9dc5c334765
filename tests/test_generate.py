import numpy as np
import pytest

from hepfit.models import AddPdf, Chebychev, CrystalBall, Exponential, Gaussian, ProdPdf, RealVar, Uniform


class TestGenerate:
    def test_gaussian_moments(self, gauss, rng):
        data = gauss.generate(20000, rng=rng)
        assert data.num_entries() == 20000
        assert np.mean(data["x"]) == pytest.approx(1.0, abs=0.05)
        assert np.std(data["x"]) == pytest.approx(2.0, rel=0.03)

    def test_inside_range(self, rng):
        x = RealVar("x", 0.0, 0.0, 1.0)
        gauss = Gaussian(x, 5.0, 1.0)
        data = gauss.generate(1000, rng=rng)
        assert data["x"].min() >= 0.0
        assert data["x"].max() <= 1.0

    def test_exponential_mean(self, rng):
        x = RealVar("x", 0.0, 0.0, 50.0)
        data = Exponential(x, -0.5).generate(20000, rng=rng)
        assert np.mean(data["x"]) == pytest.approx(2.0, rel=0.03)

    @pytest.mark.parametrize("make", [
        lambda x: Chebychev(x, [0.4]),
        lambda x: CrystalBall(x, 0.0, 1.0, 1.0, 3.0),
        lambda x: Uniform(x),
    ])
    def test_accept_reject_follows_pdf(self, make, rng):
        x = RealVar("x", 0.0, -3.0, 3.0)
        pdf = make(x)
        data = pdf.generate(20000, rng=rng)
        hist = data.binned(x, bins=6)
        expected = np.array([pdf.integral(lo, hi) for lo, hi in zip(hist.binning.edges[:-1], hist.binning.edges[1:])])
        np.testing.assert_allclose(hist.counts / 20000, expected, atol=0.015)

    def test_composite_fraction(self, composite, rng):
        data = composite.generate(10000, rng=rng)
        in_peak = np.sum(np.abs(data["m"] - 5.0) < 1.5)
        sig, bkg = composite.pdfs
        expected = 0.3 * sig.integral(3.5, 6.5) + 0.7 * bkg.integral(3.5, 6.5)
        assert in_peak / 10000 == pytest.approx(expected, abs=0.02)

    def test_product(self, rng):
        x = RealVar("x", 0.0, -5.0, 5.0)
        y = RealVar("y", 0.0, 0.0, 1.0)
        data = ProdPdf([Gaussian(x, 0.0, 1.0), Uniform(y)]).generate(500, rng=rng)
        assert data.names == ["x", "y"]
        assert data.num_entries() == 500

    def test_zero_events(self, gauss, rng):
        assert gauss.generate(0, rng=rng).num_entries() == 0

    def test_negative_events(self, gauss, rng):
        with pytest.raises(ValueError):
            gauss.generate(-1, rng=rng)

    def test_reproducible(self, gauss):
        a = gauss.generate(100, rng=np.random.default_rng(1))
        b = gauss.generate(100, rng=np.random.default_rng(1))
        np.testing.assert_array_equal(a["x"], b["x"])

    def test_extended_default_count(self, composite, rng):
        sig, bkg = composite.pdfs
        model = AddPdf([sig, bkg], [RealVar("ns", 200.0, 0.0, 1e4), RealVar("nb", 300.0, 0.0, 1e4)])
        assert model.generate(rng=rng).num_entries() == 500
        assert model.generate(extended=True, rng=rng).num_entries() != 0

    def test_non_extended_needs_count(self, gauss):
        with pytest.raises(ValueError):
            gauss.generate()
