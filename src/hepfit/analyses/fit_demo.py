"""
Fit Demonstration
=================
Generate-and-fit studies: a single Gaussian, and a Gaussian signal on an
exponential background with the components drawn separately.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np

from hepfit.config import AnalysisConfig, resolve_output_path
from hepfit.fitting import FitResult
from hepfit.io import ResultsIO
from hepfit.models import AddPdf, Exponential, Gaussian, RealVar
from hepfit.plotting import Frame

logger = logging.getLogger(__name__)


@dataclass
class FitDemoResult:
    results: Dict[str, FitResult] = field(default_factory=dict)
    chi_square: Dict[str, float] = field(default_factory=dict)
    plots: Dict[str, str] = field(default_factory=dict)


def make_gaussian_model() -> Gaussian:
    x = RealVar("x", 0.0, -10.0, 10.0)
    mean = RealVar("mean", 1.0, -10.0, 10.0)
    sigma = RealVar("sigma", 1.0, 0.1, 10.0)
    return Gaussian(x, mean, sigma, name="gauss")


def make_composite_model() -> AddPdf:
    """Gaussian signal on an exponential background over [0, 10]."""
    x = RealVar("x", 5.0, 0.0, 10.0, unit="GeV", title="m")
    mean = RealVar("mean", 5.0, 3.0, 7.0)
    sigma = RealVar("sigma", 0.5, 0.1, 2.0)
    c = RealVar("c", -0.3, -2.0, 0.0)
    frac = RealVar("frac", 0.3, 0.0, 1.0)
    sig = Gaussian(x, mean, sigma, name="sig")
    bkg = Exponential(x, c, name="bkg")
    return AddPdf([sig, bkg], [frac], name="model")


def _fit_options(config: AnalysisConfig) -> dict:
    return {"print_level": config.print_level, "num_cpu": config.num_cpu, "batch_mode": config.batch_mode}


def _save_frame(frame: Frame, filename: str, config: AnalysisConfig) -> str:
    path = frame.save(resolve_output_path(filename, config))
    frame.close()
    return path


def gaussian_fit(config: AnalysisConfig, rng: np.random.Generator, save: bool = True) -> tuple[FitResult, float, Optional[str]]:
    gauss = make_gaussian_model()
    data = gauss.generate(config.n_events, rng=rng)

    # Start away from the generating values
    gauss.mean.value, gauss.sigma.value = 0.5, 1.5
    result = gauss.fit_to(data, **_fit_options(config))
    print(f"Gaussian fit: mean = {gauss.mean.value:.4f} +/- {gauss.mean.error:.4f}, "
          f"sigma = {gauss.sigma.value:.4f} +/- {gauss.sigma.error:.4f}")

    frame = Frame(gauss.x, bins=100, title="Gaussian fit")
    frame.plot_data(data, label="generated data")
    frame.plot_pdf(gauss, label="fit")
    chi2 = frame.chi_square(n_fit_params=len(result.parameter_names))
    path = _save_frame(frame, "gaussian_fit.png", config) if save else None
    return result, chi2, path


def composite_fit(config: AnalysisConfig, rng: np.random.Generator, save: bool = True) -> tuple[FitResult, float, Optional[str]]:
    model = make_composite_model()
    data = model.generate(config.n_events, rng=rng)

    sig, bkg = model.pdfs
    frac = model.coefficients[0]
    sig.mean.value, sig.sigma.value, bkg.c.value, frac.value = 4.8, 0.8, -0.5, 0.5
    result = model.fit_to(data, **_fit_options(config))
    print(f"Signal fraction: {frac.value:.4f} +/- {frac.error:.4f}")

    frame = Frame(model.observables[0], bins=50, title="Signal + background fit")
    frame.plot_data(data, label="generated data")
    frame.plot_pdf(model, label="total")
    frame.plot_pdf(model, components=["bkg"], linestyle="--", color="tab:red", label="background")
    frame.plot_pdf(model, components=["sig"], linestyle=":", color="tab:green", label="signal")
    chi2 = frame.chi_square(n_fit_params=len(result.parameter_names))
    path = _save_frame(frame, "composite_fit.png", config) if save else None
    return result, chi2, path


def run(config: AnalysisConfig, save: bool = True) -> FitDemoResult:
    rng = np.random.default_rng(config.seed)
    demo = FitDemoResult()

    for name, study in (("gaussian", gaussian_fit), ("composite", composite_fit)):
        result, chi2, path = study(config, rng, save=save)
        demo.results[name] = result
        demo.chi_square[name] = chi2
        if path:
            demo.plots[name] = path
        print(f"{name}: status {result.status}, chi2/ndf = {chi2:.3f}, {result.ncalls} NLL calls, {result.wall_time:.3f} s")

    if save:
        path = resolve_output_path("fit_demo_results.h5", config)
        for name, result in demo.results.items():
            ResultsIO.save_fit_result(result, path, key=name)
    plt.close("all")
    return demo
