"""
Probability density models: variables, primitive shapes, sums and products.
"""
from hepfit.models.composite import AddPdf, ProdPdf
from hepfit.models.kernels import cpu_info, dispatch_counts, reset_dispatch_counts, set_dispatch_debug
from hepfit.models.pdf import Pdf
from hepfit.models.primitives import Chebychev, CrystalBall, Exponential, Gaussian, Pdf1D, Uniform
from hepfit.models.variables import ParameterSnapshot, RealVar

__all__ = [
    "AddPdf",
    "Chebychev",
    "CrystalBall",
    "Exponential",
    "Gaussian",
    "ParameterSnapshot",
    "Pdf",
    "Pdf1D",
    "ProdPdf",
    "RealVar",
    "Uniform",
    "cpu_info",
    "dispatch_counts",
    "reset_dispatch_counts",
    "set_dispatch_debug",
]
