import matplotlib

matplotlib.use("Agg")

import awkward as ak
import matplotlib.pyplot as plt
import numpy as np
import pytest

from hepfit.config import AnalysisConfig
from hepfit.dataframe import disable_implicit_mt
from hepfit.models import Exponential, Gaussian, RealVar


@pytest.fixture(autouse=True)
def _reset_state():
    yield
    disable_implicit_mt()
    plt.close("all")


@pytest.fixture
def rng():
    return np.random.default_rng(20240601)


@pytest.fixture
def muon_events(rng):
    """Synthetic NanoAOD-like muon collections with 0 to 3 muons per event."""
    n_events = 2000
    counts = rng.integers(0, 4, n_events)
    total = int(counts.sum())
    return {
        "nMuon": counts.astype(np.uint32),
        "Muon_pt": ak.unflatten(rng.uniform(5.0, 50.0, total), counts),
        "Muon_eta": ak.unflatten(rng.uniform(-2.4, 2.4, total), counts),
        "Muon_phi": ak.unflatten(rng.uniform(-np.pi, np.pi, total), counts),
        "Muon_mass": ak.unflatten(np.full(total, 0.1057), counts),
        "Muon_charge": ak.unflatten(rng.choice(np.array([-1, 1], dtype=np.int32), total), counts),
    }


@pytest.fixture
def x():
    return RealVar("x", 0.0, -10.0, 10.0)


@pytest.fixture
def gauss(x):
    mean = RealVar("mean", 1.0, -10.0, 10.0)
    sigma = RealVar("sigma", 2.0, 0.1, 10.0)
    return Gaussian(x, mean, sigma, name="gauss")


@pytest.fixture
def composite():
    """Gaussian signal on an exponential background, as fractions."""
    from hepfit.models import AddPdf

    m = RealVar("m", 5.0, 0.0, 10.0)
    mean = RealVar("mean", 5.0, 3.0, 7.0)
    sigma = RealVar("sigma", 0.5, 0.1, 2.0)
    c = RealVar("c", -0.3, -2.0, 0.0)
    frac = RealVar("frac", 0.3, 0.0, 1.0)
    sig = Gaussian(m, mean, sigma, name="sig")
    bkg = Exponential(m, c, name="bkg")
    return AddPdf([sig, bkg], [frac], name="model")


@pytest.fixture
def config(tmp_path):
    return AnalysisConfig(n_events=2000, seed=7, output_dir=str(tmp_path / "output"))
