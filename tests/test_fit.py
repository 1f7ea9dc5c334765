import logging

import numpy as np
import pytest

from hepfit.data import Dataset
from hepfit.fitting import NLL, FitOptions, FitResult, Minimizer, fit
from hepfit.fitting.nll import EVAL_ERROR_PENALTY
from hepfit.models import AddPdf, Exponential, Gaussian, ParameterSnapshot, RealVar, Uniform


@pytest.fixture
def gauss_data(gauss, rng):
    return gauss.generate(5000, rng=rng)


def _start(gauss):
    gauss.mean.value = 0.0
    gauss.sigma.value = 3.0


class TestNLL:
    def test_value(self, gauss, gauss_data):
        expected = -np.sum(np.log(gauss.pdf(gauss_data)))
        with NLL(gauss, gauss_data) as nll:
            assert nll() == pytest.approx(expected, rel=1e-12)
            assert nll.ncalls == 1

    def test_weighted_value(self, gauss, gauss_data):
        weighted = Dataset([gauss.x], {"x": gauss_data["x"]}, weights=np.full(gauss_data.num_entries(), 0.5))
        with NLL(gauss, gauss_data) as nll, NLL(gauss, weighted) as nll_w:
            assert nll_w() == pytest.approx(0.5 * nll(), rel=1e-12)

    def test_parallel_matches_serial(self, gauss, gauss_data):
        with NLL(gauss, gauss_data, num_cpu=1) as serial, NLL(gauss, gauss_data, num_cpu=4) as parallel:
            assert parallel() == pytest.approx(serial(), rel=1e-12)

    def test_scalar_matches_batch(self, gauss, gauss_data):
        with NLL(gauss, gauss_data, batch_mode=True) as batch, NLL(gauss, gauss_data, batch_mode=False) as scalar:
            assert scalar() == pytest.approx(batch(), rel=1e-10)

    def test_extended_term(self, composite, rng):
        sig, bkg = composite.pdfs
        model = AddPdf([sig, bkg], [RealVar("ns", 300.0, 0.0, 1e4), RealVar("nb", 700.0, 0.0, 1e4)])
        data = model.generate(800, rng=rng)
        with NLL(model, data) as nll:
            assert nll.extended
            expected = -np.sum(np.log(model.pdf(data))) + 1000.0 - 800 * np.log(1000.0)
            assert nll() == pytest.approx(expected, rel=1e-10)

    def test_extended_requires_extendable_pdf(self, gauss, gauss_data):
        with pytest.raises(ValueError):
            NLL(gauss, gauss_data, extended=True)

    def test_missing_observable(self, gauss):
        other = RealVar("other", 0.0, 0.0, 1.0)
        with pytest.raises(KeyError):
            NLL(gauss, Dataset([other], {"other": [0.5]}))

    def test_evaluation_errors_are_penalized(self, x, gauss_data):
        sigma = RealVar("s", 2.0, -1.0, 5.0)
        pdf = Gaussian(x, RealVar("m", 1.0, -5.0, 5.0), sigma)
        with NLL(pdf, gauss_data) as nll:
            valid = nll()
            sigma.value = -0.5
            penalized = nll()
            assert nll.eval_errors == gauss_data.num_entries()
            assert penalized == pytest.approx(valid + EVAL_ERROR_PENALTY * gauss_data.num_entries())
            assert nll.total_eval_errors == gauss_data.num_entries()

    def test_offset(self, gauss, gauss_data):
        with NLL(gauss, gauss_data, offset=True) as nll:
            assert nll() == 0.0
            raw = nll.offset_value
            gauss.mean.value = 1.5
            assert nll() + nll.offset_value == pytest.approx(nll.raw_value()[0])
            assert raw != 0.0

    def test_binned(self, gauss, gauss_data):
        hist = gauss_data.binned(bins=40)
        with NLL(gauss, hist) as nll:
            nu = hist.sum_weights()
            mu = nu * gauss.pdf(hist) * hist.binning.widths
            assert nll() == pytest.approx(np.sum(mu) - np.sum(hist.counts * np.log(mu)), rel=1e-10)


class TestFit:
    def test_recovers_parameters(self, gauss, gauss_data):
        _start(gauss)
        result = fit(gauss, gauss_data)
        assert result.status == 0
        assert result.is_valid
        assert result.cov_quality == 3
        assert result.value("mean") == pytest.approx(1.0, abs=4 * result.error("mean"))
        assert result.value("sigma") == pytest.approx(2.0, abs=4 * result.error("sigma"))
        assert result.error("mean") == pytest.approx(2.0 / np.sqrt(5000), rel=0.1)
        assert gauss.mean.value == result.value("mean")
        assert gauss.mean.error == result.error("mean")
        np.testing.assert_allclose(result.initial_values, [0.0, 3.0])

    def test_min_nll_is_nll_at_minimum(self, gauss, gauss_data):
        _start(gauss)
        result = fit(gauss, gauss_data, offset=True)
        with NLL(gauss, gauss_data) as nll:
            assert result.min_nll == pytest.approx(nll(), rel=1e-12)

    def test_batch_and_scalar_agree(self, gauss, rng):
        data = gauss.generate(2000, rng=rng)
        start = ParameterSnapshot(gauss.parameters())
        batch = fit(gauss, data, batch_mode=True)
        start.restore()
        scalar = fit(gauss, data, batch_mode=False)
        np.testing.assert_allclose(batch.values, scalar.values, atol=0.01 * batch.errors.min())
        np.testing.assert_allclose(batch.errors, scalar.errors, rtol=0.01)

    def test_independent_of_num_cpu(self, gauss, gauss_data):
        start = ParameterSnapshot(gauss.parameters())
        serial = fit(gauss, gauss_data, num_cpu=1)
        start.restore()
        parallel = fit(gauss, gauss_data, num_cpu=4)
        np.testing.assert_allclose(serial.values, parallel.values, atol=0.01 * serial.errors.min())
        assert parallel.min_nll == pytest.approx(serial.min_nll, rel=1e-10)

    def test_composite(self, composite, rng):
        data = composite.generate(5000, rng=rng)
        frac = composite.coefficients[0]
        frac.value = 0.5
        result = composite.fit_to(data)
        assert result.status == 0
        assert result.value("frac") == pytest.approx(0.3, abs=4 * result.error("frac"))
        assert result.value("mean") == pytest.approx(5.0, abs=4 * result.error("mean"))
        assert abs(result.correlation_of("frac", "c")) < 1.0
        np.testing.assert_allclose(np.diag(result.correlation), 1.0)

    def test_extended_yields(self, composite, rng):
        sig, bkg = composite.pdfs
        n_sig = RealVar("n_sig", 1000.0, 0.0, 10000.0)
        n_bkg = RealVar("n_bkg", 2000.0, 0.0, 10000.0)
        model = AddPdf([sig, bkg], [n_sig, n_bkg], name="extended")
        data = model.generate(rng=rng, extended=True)
        n_sig.value, n_bkg.value = 1500.0, 1500.0
        result = fit(model, data)
        assert result.status == 0
        assert n_sig.value + n_bkg.value == pytest.approx(data.num_entries(), rel=1e-3)
        assert n_sig.value == pytest.approx(1000.0, abs=4 * n_sig.error)

    def test_binned_fit(self, gauss, gauss_data):
        _start(gauss)
        result = fit(gauss, gauss_data.binned(bins=50))
        assert result.status == 0
        assert result.value("mean") == pytest.approx(1.0, abs=4 * result.error("mean"))
        assert result.value("sigma") == pytest.approx(2.0, abs=4 * result.error("sigma"))

    def test_constant_parameters_are_reported(self, gauss, gauss_data):
        gauss.sigma.set_constant()
        result = fit(gauss, gauss_data)
        assert result.parameter_names == ["mean"]
        assert result.constant_parameters == {"sigma": 2.0}

    def test_call_limit_gives_status_1(self, gauss, gauss_data):
        _start(gauss)
        result = fit(gauss, gauss_data, max_calls=5)
        assert result.status == 1
        assert not result.is_valid

    def test_without_hesse(self, gauss, gauss_data):
        result = fit(gauss, gauss_data, hesse=False)
        assert result.cov_quality == 1
        assert np.all(result.errors > 0)

    def test_strategy_2(self, gauss, gauss_data):
        _start(gauss)
        assert fit(gauss, gauss_data, strategy=2).status == 0

    def test_nothing_to_fit(self, x, gauss_data):
        with pytest.raises(ValueError):
            fit(Gaussian(x, 1.0, 2.0), gauss_data)

    def test_print_level(self, gauss, gauss_data, capsys):
        fit(gauss, gauss_data, print_level=1)
        out = capsys.readouterr().out
        assert "Minimizer: minimizing NLL of 'gauss'" in out
        assert "Floating Parameter" in out



class TestFitStatus:
    def test_overflowing_exponential_is_an_evaluation_error(self, rng):
        x = RealVar("x", 1.0, 0.0, 1000.0)
        c = RealVar("c", -0.01, -1.0, 1.0)
        exp = Exponential(x, c)
        data = exp.generate(500, rng=rng)
        for batch_mode in (True, False):
            c.value = 0.9
            result = fit(exp, data, batch_mode=batch_mode)
            assert isinstance(result, FitResult)
            assert result.status == 3
            assert result.eval_errors > 0

    def test_flat_likelihood_gives_status_2(self, rng):
        # Both components are exactly 1/8, so the likelihood does not depend on the fraction
        x = RealVar("x", 4.0, 0.0, 8.0)
        frac = RealVar("frac", 0.75, 0.5, 1.0)
        model = AddPdf([Uniform(x, name="u1"), Uniform(x, name="u2")], [frac])
        result = fit(model, Uniform(x).generate(1000, rng=rng))
        assert result.status == 2
        assert result.cov_quality == 2
        assert result.status_message == "Hessian not positive definite"
        assert result.eval_errors == 0

    def test_negative_density_at_minimum_gives_status_3(self, x, rng):
        # Constant fractions 0.8 and 0.7 leave -0.5 for the flat component
        mean = RealVar("mean", 0.0, -10.0, 10.0)
        model = AddPdf(
            [Gaussian(x, mean, 1.0, name="narrow"), Gaussian(x, 0.0, 1.0, name="centre"), Uniform(x)],
            [0.8, 0.7],
        )
        result = fit(model, Uniform(x).generate(1000, rng=rng))
        assert result.status == 3
        assert not result.is_valid
        assert result.eval_errors > 0

    def test_parameter_at_limit(self, gauss, gauss_data, caplog):
        gauss.mean.set_range(-10.0, 0.0)
        with caplog.at_level(logging.WARNING, logger="hepfit.fitting"):
            result = fit(gauss, gauss_data)
        assert result.at_limit == ["mean"]
        assert result.value("mean") == pytest.approx(0.0, abs=0.01)
        assert "<- at limit" in str(result)
        assert any("at its limit" in record.getMessage() for record in caplog.records)


class TestWeightedFit:
    @pytest.fixture
    def weighted(self, gauss, gauss_data):
        return Dataset([gauss.x], {"x": gauss_data["x"]}, weights=np.full(gauss_data.num_entries(), 0.5))

    def test_sumw2_correction_is_default(self, gauss, gauss_data, weighted, caplog):
        start = ParameterSnapshot(gauss.parameters())
        reference = fit(gauss, gauss_data)
        start.restore()
        with caplog.at_level(logging.WARNING, logger="hepfit.fitting"):
            corrected = fit(gauss, weighted)
        assert any("sumw2_error" in record.getMessage() for record in caplog.records)
        np.testing.assert_allclose(corrected.values, reference.values, atol=0.01 * reference.errors.min())
        np.testing.assert_allclose(corrected.errors, reference.errors, rtol=0.05)

    def test_uncorrected_errors(self, gauss, gauss_data, weighted):
        start = ParameterSnapshot(gauss.parameters())
        reference = fit(gauss, gauss_data)
        start.restore()
        uncorrected = fit(gauss, weighted, sumw2_error=False)
        np.testing.assert_allclose(uncorrected.errors, np.sqrt(2.0) * reference.errors, rtol=0.05)


class TestFitOptions:
    @pytest.mark.parametrize("changes", [
        {"print_level": 5},
        {"num_cpu": 0},
        {"strategy": 3},
        {"max_calls": 0},
        {"tolerance": 0.0},
    ])
    def test_invalid(self, changes):
        with pytest.raises(ValueError):
            FitOptions(**changes)

    def test_replace(self):
        options = FitOptions().replace(num_cpu=4)
        assert options.num_cpu == 4
        assert options.batch_mode

    def test_frozen(self):
        with pytest.raises(AttributeError):
            FitOptions().num_cpu = 2


class TestFitResult:
    @pytest.fixture
    def result(self):
        return FitResult(
            parameter_names=["a", "b"],
            initial_values=np.array([0.0, 1.0]),
            values=np.array([1.0, 2.0]),
            errors=np.array([0.1, 0.2]),
            covariance=np.array([[0.01, 0.01], [0.01, 0.04]]),
            min_nll=12.5,
            edm=1e-6,
            status=0,
            cov_quality=3,
            at_limit=["b"],
        )

    def test_accessors(self, result):
        assert result.value("b") == 2.0
        assert result.error("a") == 0.1
        assert result.pull("a", 0.8) == pytest.approx(2.0)
        assert result.correlation_of("a", "b") == pytest.approx(0.5)
        with pytest.raises(KeyError):
            result.value("c")

    def test_str(self, result):
        text = str(result)
        assert "minimized NLL value: 12.5" in text
        assert "<- at limit" in text
        assert "Full, accurate covariance matrix" in text

    def test_status_message(self, result):
        assert result.status_message == "converged"


def test_minimizer_inverts_non_positive_hessian():
    cov, positive = Minimizer.invert(np.array([[1.0, 0.0], [0.0, -1.0]]))
    assert not positive
    assert np.all(np.linalg.eigvalsh(cov) > 0)
