"""
Dimuon Spectrum
===============
Invariant mass spectrum of opposite-charge muon pairs from CMS open data.

The chain selects events with exactly two muons of opposite charge,
computes the invariant mass of the pair and fills a logarithmically binned
histogram. The cut-flow report and the histogram come out of one event loop.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np
import matplotlib.pyplot as plt

from hepfit.config import AnalysisConfig, resolve_output_path
from hepfit.dataframe import CutFlowReport, DataFrame, enable_implicit_mt
from hepfit.histogram import Binning, Histogram1D
from hepfit.io import ResultsIO
from hepfit.physics import DIMUON_RESONANCES, invariant_mass
from hepfit.utils import timer

if TYPE_CHECKING:
    from matplotlib.axes import Axes

logger = logging.getLogger(__name__)

DIMUON_BINNING = Binning.log(30000, 0.25, 300)
MUON_COLUMNS = ["Muon_pt", "Muon_eta", "Muon_phi", "Muon_mass"]


@dataclass
class DimuonResult:
    histogram: Histogram1D
    report: CutFlowReport
    n_selected: int
    plot_path: Optional[str] = None
    results_path: Optional[str] = None


def build_dimuon_pipeline(df: DataFrame) -> DataFrame:
    """Lazy selection of opposite-charge muon pairs with their invariant mass."""
    df_2mu = df.filter("nMuon == 2", "Events with exactly two muons")
    df_os = df_2mu.filter("Muon_charge[0] != Muon_charge[1]", "Muons with opposite charge")
    return df_os.define("Dimuon_mass", invariant_mass, columns=MUON_COLUMNS)


def plot_spectrum(hist: Histogram1D, ax: Optional[Axes] = None) -> Axes:
    """Log-log plot of the spectrum with the known resonances labelled."""
    ax = hist.plot(ax=ax, logx=True, logy=True, color="black", lw=0.8)
    ax.set_xlabel("Dimuon mass (GeV)")
    ax.set_ylabel("N_Events")
    ax.set_xlim(hist.binning.lo, hist.binning.hi)

    edges = hist.edges
    peak = max(float(hist.counts.max()), 1.0)
    for resonance in DIMUON_RESONANCES:
        if not edges[0] <= resonance.mass < edges[-1]:
            continue
        idx = int(np.searchsorted(edges, resonance.mass, side="right")) - 1
        window = hist.counts[max(idx - 20, 0):idx + 20]
        height = float(window.max()) if window.size and window.max() > 0 else peak * 1e-3
        ax.text(resonance.mass, height * 1.5, resonance.label, ha="center", va="bottom", fontsize=12)
    ax.text(0.02, 0.95, "CMS Open Data", transform=ax.transAxes, fontweight="bold", va="top")
    ax.text(0.02, 0.90, r"$\sqrt{s}$ = 8 TeV, L$_{int}$ = 11.6 fb$^{-1}$", transform=ax.transAxes, va="top")
    return ax


@timer
def run(config: AnalysisConfig, df: Optional[DataFrame] = None, save: bool = True) -> DimuonResult:
    """
    Run the dimuon analysis.

    Args:
        config: Input files, thread count and output directory.
        df: Dataframe to analyse instead of the configured files.
        save: Write the plot and the histogram to the output directory.
    """
    if config.num_threads > 0:
        enable_implicit_mt(config.num_threads)

    if df is None:
        logger.info(f"Reading tree '{config.tree_name}' from {len(config.files)} file(s)")
        df = DataFrame.from_root(config.tree_name, config.files)

    selected = build_dimuon_pipeline(df)
    hist_result = selected.histo1d(DIMUON_BINNING, "Dimuon_mass", name="Dimuon_mass", title="Dimuon mass")
    report_result = selected.report()
    count_result = selected.count()

    hist = hist_result.get_value()
    report = report_result.get_value()
    n_selected = count_result.get_value()

    report.print()
    print(f"Selected dimuon events: {n_selected}")

    result = DimuonResult(histogram=hist, report=report, n_selected=n_selected)
    if save:
        ax = plot_spectrum(hist)
        result.plot_path = resolve_output_path("dimuon_spectrum.png", config)
        ax.figure.savefig(result.plot_path, dpi=150)
        plt.close(ax.figure)
        logger.info(f"Spectrum saved to: {result.plot_path}")

        result.results_path = resolve_output_path("dimuon_results.h5", config)
        ResultsIO.save_histogram(hist, result.results_path, key="Dimuon_mass")
    return result
