from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import awkward as ak
import matplotlib.pyplot as plt
import numpy as np

from hepfit.utils import flatten, is_jagged

if TYPE_CHECKING:
    import numpy.typing as npt
    from matplotlib.axes import Axes


@dataclass(frozen=True)
class Binning:
    """
    Bin edges of a one-dimensional histogram.

    Use `Binning.uniform`, `Binning.log` or `Binning.from_edges`, or the
    shorthand `Binning(nbins, lo, hi)` for uniform bins.
    """
    nbins: int
    lo: float
    hi: float
    log_spaced: bool = False
    explicit_edges: Optional[tuple[float, ...]] = None

    def __post_init__(self) -> None:
        if self.nbins < 1:
            raise ValueError(f"Number of bins must be positive, got {self.nbins}.")
        if not self.lo < self.hi:
            raise ValueError(f"Invalid binning range [{self.lo}, {self.hi}].")
        if self.log_spaced and self.lo <= 0.0:
            raise ValueError("Logarithmic binning requires a positive lower edge.")
        if self.explicit_edges is not None:
            edges = np.asarray(self.explicit_edges, dtype=np.float64)
            if edges.size != self.nbins + 1 or np.any(np.diff(edges) <= 0.0):
                raise ValueError("Bin edges must be strictly increasing.")

    @classmethod
    def uniform(cls, nbins: int, lo: float, hi: float) -> Binning:
        return cls(nbins, float(lo), float(hi))

    @classmethod
    def log(cls, nbins: int, lo: float, hi: float) -> Binning:
        """Geometrically spaced bins, as used for spectra spanning decades."""
        return cls(nbins, float(lo), float(hi), log_spaced=True)

    @classmethod
    def from_edges(cls, edges: list[float] | npt.NDArray[np.float64]) -> Binning:
        edges = np.asarray(edges, dtype=np.float64)
        if edges.ndim != 1 or edges.size < 2:
            raise ValueError("At least two bin edges are required.")
        return cls(edges.size - 1, float(edges[0]), float(edges[-1]), explicit_edges=tuple(edges.tolist()))

    @property
    def edges(self) -> npt.NDArray[np.float64]:
        if self.explicit_edges is not None:
            return np.asarray(self.explicit_edges, dtype=np.float64)
        if self.log_spaced:
            return np.geomspace(self.lo, self.hi, self.nbins + 1)
        return np.linspace(self.lo, self.hi, self.nbins + 1)

    @property
    def centers(self) -> npt.NDArray[np.float64]:
        e = self.edges
        return 0.5 * (e[1:] + e[:-1])

    @property
    def widths(self) -> npt.NDArray[np.float64]:
        return np.diff(self.edges)


class Histogram1D:
    """
    One-dimensional weighted histogram with under- and overflow.

    Bin contents are sums of weights; squared weights are tracked for the
    bin errors.
    """
    def __init__(self, binning: Binning, name: str = "", title: str = "") -> None:
        self.binning = binning
        self.name = name
        self.title = title or name
        self.counts: npt.NDArray[np.float64] = np.zeros(binning.nbins, dtype=np.float64)
        self.sumw2: npt.NDArray[np.float64] = np.zeros(binning.nbins, dtype=np.float64)
        self.underflow: float = 0.0
        self.overflow: float = 0.0
        self.entries: int = 0
        # Running sums over in-range values for mean/std
        self._sum_wx: float = 0.0
        self._sum_wx2: float = 0.0

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(name='{self.name}', nbins={self.binning.nbins}, "
                f"range=[{self.binning.lo}, {self.binning.hi}], entries={self.entries})")

    @property
    def edges(self) -> npt.NDArray[np.float64]:
        return self.binning.edges

    @property
    def centers(self) -> npt.NDArray[np.float64]:
        return self.binning.centers

    @property
    def widths(self) -> npt.NDArray[np.float64]:
        return self.binning.widths

    def fill(self, values: Any, weights: Any = None) -> None:
        """
        Fill the histogram.

        Args:
            values: Flat array, or per-event collections (every element is filled).
            weights: Optional weights, either per value or per event for collections.
        """
        if weights is not None and is_jagged(values) and not is_jagged(weights):
            if isinstance(values, np.ndarray):
                weights = np.broadcast_to(np.asarray(weights)[:, np.newaxis], values.shape)
            else:
                values, weights = ak.broadcast_arrays(values, ak.Array(np.asarray(weights)))

        x = flatten(values).astype(np.float64, copy=False)
        if weights is None:
            w = np.ones_like(x)
        else:
            w = flatten(weights).astype(np.float64, copy=False)
            if w.shape != x.shape:
                raise ValueError(f"Weights shape {w.shape} does not match values shape {x.shape}.")

        edges = self.edges
        below = x < edges[0]
        above = x >= edges[-1]
        self.underflow += float(w[below].sum())
        self.overflow += float(w[above].sum())

        inside = ~(below | above) & np.isfinite(x)
        xi, wi = x[inside], w[inside]
        idx = np.searchsorted(edges, xi, side="right") - 1
        self.counts += np.bincount(idx, weights=wi, minlength=self.binning.nbins)
        self.sumw2 += np.bincount(idx, weights=wi * wi, minlength=self.binning.nbins)

        self._sum_wx += float(np.sum(wi * xi))
        self._sum_wx2 += float(np.sum(wi * xi * xi))
        self.entries += int(x.size)

    def _check_compatible(self, other: Histogram1D) -> None:
        if self.binning.nbins != other.binning.nbins or not np.allclose(self.edges, other.edges):
            raise ValueError("Cannot combine histograms with different binning.")

    def __iadd__(self, other: Histogram1D) -> Histogram1D:
        self._check_compatible(other)
        self.counts += other.counts
        self.sumw2 += other.sumw2
        self.underflow += other.underflow
        self.overflow += other.overflow
        self.entries += other.entries
        self._sum_wx += other._sum_wx
        self._sum_wx2 += other._sum_wx2
        return self

    def __add__(self, other: Histogram1D) -> Histogram1D:
        out = self.copy()
        out += other
        return out

    def copy(self) -> Histogram1D:
        out = Histogram1D(self.binning, name=self.name, title=self.title)
        out.counts = self.counts.copy()
        out.sumw2 = self.sumw2.copy()
        out.underflow = self.underflow
        out.overflow = self.overflow
        out.entries = self.entries
        out._sum_wx = self._sum_wx
        out._sum_wx2 = self._sum_wx2
        return out

    def scale(self, factor: float) -> None:
        """Multiply all contents by a constant factor."""
        self.counts *= factor
        self.sumw2 *= factor * factor
        self.underflow *= factor
        self.overflow *= factor
        self._sum_wx *= factor
        self._sum_wx2 *= factor

    def integral(self, include_flow: bool = False) -> float:
        total = float(self.counts.sum())
        if include_flow:
            total += self.underflow + self.overflow
        return total

    def mean(self) -> float:
        """Weighted mean of the in-range filled values."""
        total = self.integral()
        if total == 0.0:
            return float("nan")
        return self._sum_wx / total

    def std(self) -> float:
        """Weighted standard deviation of the in-range filled values."""
        total = self.integral()
        if total == 0.0:
            return float("nan")
        mean = self._sum_wx / total
        return float(np.sqrt(max(self._sum_wx2 / total - mean * mean, 0.0)))

    def errors(self) -> npt.NDArray[np.float64]:
        """Bin errors, sqrt of the sum of squared weights."""
        return np.sqrt(self.sumw2)

    def plot(
        self,
        ax: Optional[Axes] = None,
        logx: bool = False,
        logy: bool = False,
        density: bool = False,
        **kwargs: Any,
    ) -> Axes:
        """
        Draw the histogram as a step line.

        Args:
            ax: Axes to draw into, a new figure is created if omitted.
            logx: Logarithmic x-axis.
            logy: Logarithmic y-axis.
            density: Divide contents by bin width.

        Returns:
            The axes drawn into.
        """
        if ax is None:
            plt.rcParams["figure.constrained_layout.use"] = True
            _, ax = plt.subplots(figsize=(7, 5))

        values = self.counts / self.widths if density else self.counts
        kwargs.setdefault("label", self.title or None)
        ax.stairs(values, self.edges, **kwargs)

        if logx:
            ax.set_xscale("log")
        if logy:
            ax.set_yscale("log")
        if self.title:
            ax.set_title(self.title)
        ax.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        return ax
