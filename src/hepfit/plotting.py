"""
Plot Frames
===========
A `Frame` collects binned data and PDF curves over one observable and draws
them with matplotlib.

Curves are scaled to events per bin of the last plotted data, so a fitted
PDF overlays the data it was fitted to.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Union

import numpy as np
import matplotlib.pyplot as plt

from hepfit.data import DataHist, Dataset
from hepfit.histogram import Binning, Histogram1D

if TYPE_CHECKING:
    import numpy.typing as npt
    from matplotlib.axes import Axes
    from matplotlib.figure import Figure

    from hepfit.models.pdf import Pdf
    from hepfit.models.variables import RealVar

logger = logging.getLogger(__name__)

# Points per curve
CURVE_POINTS: int = 500


@dataclass
class _DataItem:
    binning: Binning
    counts: npt.NDArray[np.float64]
    errors: npt.NDArray[np.float64]
    label: Optional[str]
    style: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _CurveItem:
    pdf: Pdf
    x: npt.NDArray[np.float64]
    y: npt.NDArray[np.float64]
    scale: float
    label: Optional[str]
    is_component: bool
    style: Dict[str, Any] = field(default_factory=dict)


class Frame:
    """
    Plot frame over one observable.

    Example:
        frame = Frame(x, bins=50, title="Gaussian fit")
        frame.plot_data(data, label="toy data")
        frame.plot_pdf(model, label="fit")
        frame.plot_pdf(model, components=["bkg"], linestyle="--")
        frame.save("fit.png")
    """
    def __init__(self, observable: RealVar, bins: int | Binning = 100, title: Optional[str] = None) -> None:
        if not observable.has_range:
            raise ValueError(f"Observable '{observable.name}' needs a finite range to be plotted.")
        self.observable = observable
        self.binning = bins if isinstance(bins, Binning) else Binning.uniform(int(bins), observable.lo, observable.hi)
        self.title = title if title is not None else observable.title
        self.data_items: list[_DataItem] = []
        self.curves: list[_CurveItem] = []
        self._figure: Optional[Figure] = None

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}({self.observable.name}, bins={self.binning.nbins}, "
                f"data={len(self.data_items)}, curves={len(self.curves)})")

    # ------------------------------------------------------------------
    # Adding content
    # ------------------------------------------------------------------
    def plot_data(self, data: Union[Dataset, DataHist], label: Optional[str] = None, **style: Any) -> Frame:
        """
        Add binned data with error bars.

        Unbinned data are binned with the frame binning.
        """
        if isinstance(data, DataHist):
            if data.observable.name != self.observable.name:
                raise KeyError(f"Binned data over '{data.observable.name}' cannot be plotted over '{self.observable.name}'.")
            item = _DataItem(data.binning, data.counts.copy(), np.sqrt(data.sumw2), label or data.name, style)
        else:
            binned = data.binned(self.observable, self.binning)
            item = _DataItem(self.binning, binned.counts, np.sqrt(binned.sumw2), label or data.name, style)
        self.data_items.append(item)
        return self

    def plot_histogram(self, hist: Histogram1D, label: Optional[str] = None, **style: Any) -> Frame:
        """Add a filled histogram as data points."""
        item = _DataItem(hist.binning, hist.counts.copy(), hist.errors(), label or hist.title or None, style)
        self.data_items.append(item)
        return self

    def _reference(self) -> tuple[float, float]:
        """Events and bin width the curves are scaled to."""
        if self.data_items:
            data = self.data_items[-1]
            return float(data.counts.sum()), float(np.mean(data.binning.widths))
        return 1.0, float(np.mean(self.binning.widths))

    def _projection(self, pdf: Pdf) -> Pdf:
        """The factor of `pdf` that depends on the frame observable."""
        names = [o.name for o in pdf.observables]
        if names == [self.observable.name]:
            return pdf
        if self.observable.name not in names:
            raise KeyError(f"PDF '{pdf.name}' does not depend on '{self.observable.name}'.")
        from hepfit.models.composite import ProdPdf

        if isinstance(pdf, ProdPdf):
            for factor in pdf.pdfs:
                if self.observable.name in [o.name for o in factor.observables]:
                    return self._projection(factor)
        raise ValueError(f"Cannot project PDF '{pdf.name}' onto '{self.observable.name}'.")

    def _curve(self, pdf: Pdf, scale: float) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        x = np.linspace(self.observable.lo, self.observable.hi, CURVE_POINTS)
        with np.errstate(divide="ignore", invalid="ignore"):
            y = scale * self._projection(pdf).pdf({self.observable.name: x})
        return x, y

    def plot_pdf(
        self,
        pdf: Pdf,
        components: Optional[Sequence[Union[str, Pdf]]] = None,
        label: Optional[str] = None,
        color: Optional[str] = None,
        linestyle: str = "-",
        normalization: Optional[float] = None,
        **style: Any,
    ) -> Frame:
        """
        Add a PDF curve, or curves of some of its components.

        Args:
            pdf: PDF to draw.
            components: Component names or objects of a sum PDF. Each is drawn
                scaled by its fraction.
            label: Legend label.
            color: Line color.
            linestyle: Line style.
            normalization: Number of events the curve is scaled to. Defaults to
                the last plotted data, or the expected events of an extended PDF.
        """
        events, width = self._reference()
        if normalization is None and not self.data_items and pdf.can_be_extended():
            events = pdf.expected_events()
        if normalization is not None:
            events = normalization
        style = {**style, "linestyle": linestyle}
        if color is not None:
            style["color"] = color

        if not components:
            x, y = self._curve(pdf, events * width)
            self.curves.append(_CurveItem(pdf, x, y, events * width, label or pdf.name, False, style))
            return self

        from hepfit.models.composite import AddPdf

        if not isinstance(pdf, AddPdf):
            raise ValueError(f"Components can only be plotted for a sum PDF, got {pdf.__class__.__name__}.")
        fractions = dict(zip((id(p) for p in pdf.pdfs), pdf.fractions()))
        for component in components:
            target = pdf.find_component(component) if isinstance(component, str) else component
            if id(target) not in fractions:
                raise KeyError(f"'{target.name}' is not a direct component of '{pdf.name}'.")
            scale = fractions[id(target)] * events * width
            x, y = self._curve(target, scale)
            curve_label = label if label is not None and len(components) == 1 else target.name
            self.curves.append(_CurveItem(target, x, y, scale, curve_label, True, dict(style)))
        return self

    # ------------------------------------------------------------------
    # Goodness of fit
    # ------------------------------------------------------------------
    def _expected_counts(self) -> tuple[_DataItem, npt.NDArray[np.float64]]:
        full = [c for c in self.curves if not c.is_component]
        if not self.data_items or not full:
            raise ValueError("Goodness of fit needs plotted data and a plotted PDF.")
        data = self.data_items[-1]
        curve = full[-1]
        width = float(np.mean(data.binning.widths))
        density = self._projection(curve.pdf).pdf({self.observable.name: data.binning.centers})
        return data, curve.scale / width * density * data.binning.widths

    def chi_square(self, n_fit_params: int = 0) -> float:
        """
        Reduced chi-square between the last data and the last full PDF curve.

        Bins without error are skipped.
        """
        data, expected = self._expected_counts()
        used = data.errors > 0
        chi2 = float(np.sum(((data.counts[used] - expected[used]) / data.errors[used]) ** 2))
        ndf = int(used.sum()) - n_fit_params
        if ndf <= 0:
            raise ValueError(f"No degrees of freedom left ({int(used.sum())} bins, {n_fit_params} parameters).")
        return chi2 / ndf

    def pulls(self) -> npt.NDArray[np.float64]:
        """Per-bin pulls (data - PDF) / error, zero for bins without error."""
        data, expected = self._expected_counts()
        pulls = np.zeros_like(data.counts)
        used = data.errors > 0
        pulls[used] = (data.counts[used] - expected[used]) / data.errors[used]
        return pulls

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------
    def draw(self, ax: Optional[Axes] = None, legend: bool = True, logy: bool = False) -> Axes:
        """Draw the frame content and return the axes."""
        if ax is None:
            plt.rcParams["figure.constrained_layout.use"] = True
            self._figure, ax = plt.subplots(figsize=(7, 5))
        else:
            self._figure = ax.figure

        for item in self.data_items:
            style = {"fmt": "o", "color": "black", "markersize": 3, "elinewidth": 1, **item.style}
            ax.errorbar(item.binning.centers, item.counts, yerr=item.errors, label=item.label, **style)
        for curve in self.curves:
            style = {"lw": 2, **curve.style}
            if "color" not in style and not curve.is_component:
                style["color"] = "tab:blue"
            ax.plot(curve.x, curve.y, label=curve.label, **style)

        width = float(np.mean(self.data_items[-1].binning.widths)) if self.data_items else float(np.mean(self.binning.widths))
        unit = f" {self.observable.unit}" if self.observable.unit else ""
        ax.set_xlabel(self.observable.label)
        ax.set_ylabel(f"Events / ( {width:.3g}{unit} )")
        ax.set_title(self.title)
        ax.set_xlim(self.observable.lo, self.observable.hi)
        if logy:
            ax.set_yscale("log")
        else:
            ax.set_ylim(bottom=0)

        ax.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        ax.minorticks_on()
        ax.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)
        if legend and (self.data_items or self.curves):
            ax.legend()
        return ax

    def save(self, path: str | os.PathLike[str], dpi: int = 150) -> str:
        """Draw the frame (unless already drawn) and write it to an image file."""
        if self._figure is None:
            self.draw()
        assert self._figure is not None
        path = os.fspath(path)
        try:
            self._figure.savefig(path, dpi=dpi)
        except OSError as e:
            logger.exception(f"Failed to save plot: {e}")
            raise
        logger.info(f"Plot saved to: {path}")
        return path

    def show(self) -> None:
        if self._figure is None:
            self.draw()
        plt.show()

    def close(self) -> None:
        if self._figure is not None:
            plt.close(self._figure)
            self._figure = None
