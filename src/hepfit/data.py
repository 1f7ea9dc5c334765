"""
Datasets
========
Unbinned (`Dataset`) and binned (`DataHist`) data for likelihood fits.

Both are indexed by observable name and return the per-event values
(bin centers for binned data), so a PDF can evaluate either directly.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Mapping, Optional, Sequence, Union

import numpy as np

from hepfit.dataframe.expressions import compile_expression, to_mask
from hepfit.histogram import Binning, Histogram1D

if TYPE_CHECKING:
    import numpy.typing as npt

    from hepfit.dataframe import DataFrame
    from hepfit.models.variables import RealVar

logger = logging.getLogger(__name__)


class Dataset:
    """
    Unbinned data over a set of observables, with optional per-event weights.

    Entries outside the range of any observable are dropped on construction.
    """
    def __init__(
        self,
        observables: Sequence[RealVar],
        columns: Mapping[str, Any],
        weights: Optional[Any] = None,
        name: str = "data",
    ) -> None:
        """
        Initialize the dataset.

        Args:
            observables: Observables, their ranges select the entries.
            columns: Values per observable name.
            weights: Optional per-event weights.
            name: Dataset name.

        Raises:
            KeyError: If an observable has no column.
            ValueError: If the columns (and weights) differ in length.
        """
        self.name = name
        self._observables = list(observables)

        arrays: Dict[str, npt.NDArray[np.float64]] = {}
        for obs in self._observables:
            if obs.name not in columns:
                raise KeyError(f"No column for observable '{obs.name}' in dataset '{name}'.")
            arrays[obs.name] = np.ravel(np.asarray(columns[obs.name], dtype=np.float64))

        lengths = {len(a) for a in arrays.values()}
        w = None if weights is None else np.ravel(np.asarray(weights, dtype=np.float64))
        if w is not None:
            lengths.add(len(w))
        if len(lengths) > 1:
            raise ValueError(f"Columns of dataset '{name}' have different lengths: {sorted(lengths)}")

        n = lengths.pop() if lengths else 0
        mask = np.ones(n, dtype=bool)
        for obs in self._observables:
            values = arrays[obs.name]
            mask &= (values >= obs.lo) & (values <= obs.hi)

        n_dropped = int(n - mask.sum())
        if n_dropped:
            logger.debug(f"Dataset '{name}': dropped {n_dropped} entries outside the observable ranges")
            arrays = {k: v[mask] for k, v in arrays.items()}
            w = w[mask] if w is not None else None

        self._columns = arrays
        self._weights = w

    def __repr__(self) -> str:
        obs = ", ".join(self.names)
        kind = "weighted" if self.is_weighted else "unweighted"
        return f"{self.__class__.__name__}({self.name!r}, [{obs}], entries={self.num_entries()}, {kind})"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_arrays(
        cls,
        observables: Sequence[RealVar],
        arrays: Mapping[str, Any] | Sequence[Any],
        weights: Optional[Any] = None,
        name: str = "data",
    ) -> Dataset:
        """Dataset from a mapping of columns, or a sequence of arrays in observable order."""
        if not isinstance(arrays, Mapping):
            if len(arrays) != len(observables):
                raise ValueError(f"Expected {len(observables)} arrays, got {len(arrays)}.")
            arrays = {obs.name: values for obs, values in zip(observables, arrays)}
        return cls(observables, arrays, weights=weights, name=name)

    @classmethod
    def from_dataframe(
        cls,
        df: DataFrame,
        observables: Sequence[RealVar],
        weight: Optional[str] = None,
        name: str = "data",
    ) -> Dataset:
        """
        Dataset from the columns of a dataframe (runs its event loop).

        Observables are matched to columns by name.
        """
        names = [obs.name for obs in observables]
        columns = df.as_numpy(names + ([weight] if weight else [])).get_value()
        weights = columns.pop(weight) if weight else None
        return cls(observables, columns, weights=weights, name=name)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    @property
    def observables(self) -> list[RealVar]:
        return list(self._observables)

    @property
    def names(self) -> list[str]:
        return [obs.name for obs in self._observables]

    def __getitem__(self, name: str) -> npt.NDArray[np.float64]:
        try:
            return self._columns[name]
        except KeyError:
            raise KeyError(f"Observable '{name}' not in dataset '{self.name}'.") from None

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return self.num_entries()

    def num_entries(self) -> int:
        if not self._columns:
            return 0
        return len(next(iter(self._columns.values())))

    @property
    def is_weighted(self) -> bool:
        return self._weights is not None

    @property
    def weights(self) -> npt.NDArray[np.float64]:
        """Per-event weights (ones for unweighted data)."""
        if self._weights is None:
            return np.ones(self.num_entries(), dtype=np.float64)
        return self._weights

    def sum_weights(self) -> float:
        return float(self.weights.sum())

    def sum_weights2(self) -> float:
        return float(np.sum(self.weights ** 2))

    def columns(self) -> Dict[str, npt.NDArray[np.float64]]:
        return dict(self._columns)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def reduce(
        self,
        cut: Union[str, Callable[[Dict[str, Any]], Any], npt.NDArray[np.bool_]],
        name: Optional[str] = None,
    ) -> Dataset:
        """
        Subset of the entries passing a cut.

        Args:
            cut: Expression string over observable names (e.g. ``"x > 2 && x < 4"``),
                a callable receiving the columns, or a boolean mask.
            name: Name of the new dataset.
        """
        if isinstance(cut, str):
            expression = compile_expression(cut)
            for column in expression.columns:
                if column not in self._columns:
                    raise KeyError(f"Unknown column '{column}' in cut '{cut}'.")
            mask = to_mask(expression.evaluate(self._columns), self.num_entries())
        elif callable(cut):
            mask = cut(self.columns())
        else:
            mask = cut
        mask = np.broadcast_to(np.asarray(mask, dtype=bool), (self.num_entries(),))

        columns = {k: v[mask] for k, v in self._columns.items()}
        weights = self._weights[mask] if self._weights is not None else None
        return Dataset(self._observables, columns, weights=weights, name=name or self.name)

    def append(self, other: Dataset) -> None:
        """
        Append the entries of another dataset in place.

        Raises:
            ValueError: If the observables differ.
        """
        if set(other.names) != set(self.names):
            raise ValueError(f"Cannot append dataset over {other.names} to dataset over {self.names}.")
        weighted = self.is_weighted or other.is_weighted
        weights = np.concatenate([self.weights, other.weights]) if weighted else None
        self._columns = {k: np.concatenate([v, other[k]]) for k, v in self._columns.items()}
        self._weights = weights

    def binned(self, observable: Optional[RealVar] = None, bins: int | Binning = 100, name: Optional[str] = None) -> DataHist:
        """Bin the data in one observable."""
        obs = observable if observable is not None else self._observables[0]
        binning = bins if isinstance(bins, Binning) else Binning.uniform(int(bins), obs.lo, obs.hi)
        hist = Histogram1D(binning, name=name or f"{self.name}_binned")
        hist.fill(self[obs.name], self._weights)
        return DataHist.from_histogram(obs, hist)


class DataHist:
    """
    Binned data over one observable.

    Indexing with the observable name returns the bin centers; `weights`
    are the bin contents.
    """
    def __init__(
        self,
        observable: RealVar,
        binning: Binning,
        counts: Any,
        sumw2: Optional[Any] = None,
        name: str = "datahist",
    ) -> None:
        edges = binning.edges
        tolerance = 1e-9 * (observable.hi - observable.lo)
        if edges[0] < observable.lo - tolerance or edges[-1] > observable.hi + tolerance:
            raise ValueError(f"Binning [{edges[0]}, {edges[-1]}] exceeds the range of '{observable.name}'.")

        self.observable = observable
        self.binning = binning
        self.name = name
        self.counts = np.asarray(counts, dtype=np.float64)
        self.sumw2 = self.counts.copy() if sumw2 is None else np.asarray(sumw2, dtype=np.float64)
        if self.counts.shape != (binning.nbins,) or self.sumw2.shape != (binning.nbins,):
            raise ValueError(f"Expected {binning.nbins} bin contents, got {self.counts.shape}.")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, {self.observable.name}, bins={self.binning.nbins}, sum={self.sum_weights():.6g})"

    @classmethod
    def from_histogram(cls, observable: RealVar, hist: Histogram1D, name: Optional[str] = None) -> DataHist:
        return cls(observable, hist.binning, hist.counts.copy(), hist.sumw2.copy(), name=name or hist.name or "datahist")

    def to_histogram(self) -> Histogram1D:
        hist = Histogram1D(self.binning, name=self.name)
        hist.counts = self.counts.copy()
        hist.sumw2 = self.sumw2.copy()
        hist.entries = int(round(self.counts.sum()))
        centers = self.binning.centers
        hist._sum_wx = float(np.sum(self.counts * centers))
        hist._sum_wx2 = float(np.sum(self.counts * centers * centers))
        return hist

    @property
    def observables(self) -> list[RealVar]:
        return [self.observable]

    @property
    def names(self) -> list[str]:
        return [self.observable.name]

    def __getitem__(self, name: str) -> npt.NDArray[np.float64]:
        if name != self.observable.name:
            raise KeyError(f"Observable '{name}' not in binned dataset '{self.name}'.")
        return self.binning.centers

    def __contains__(self, name: object) -> bool:
        return name == self.observable.name

    @property
    def weights(self) -> npt.NDArray[np.float64]:
        return self.counts

    @property
    def is_weighted(self) -> bool:
        return not np.allclose(self.sumw2, self.counts)

    def num_entries(self) -> int:
        """Number of bins."""
        return self.binning.nbins

    def sum_weights(self) -> float:
        return float(self.counts.sum())

    def sum_weights2(self) -> float:
        return float(self.sumw2.sum())
