"""
hepfit
======
Dataset creation, likelihood fitting and batch-mode performance studies on
HEP data, driven from a few high-level calls: build a dataframe, filter and
define columns, histogram, build a model, generate, fit, plot.
"""
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("hepfit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
