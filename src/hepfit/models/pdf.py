from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np

from hepfit.data import Dataset
from hepfit.models.variables import RealVar, unique_vars

if TYPE_CHECKING:
    import numpy.typing as npt

    from hepfit.data import DataHist
    from hepfit.fitting.result import FitResult

logger = logging.getLogger(__name__)

DataLike = Union[Mapping[str, Any], Dataset, Sequence[float], np.ndarray]


class Pdf(ABC):
    """
    Abstract base class for probability density functions.

    A PDF is normalized over the ranges of its observables. Parameters are
    `RealVar` objects shared by reference, so changing a parameter value
    changes every PDF using it.
    """
    NAME: str = "PDF"

    def __init__(self, name: str, observables: Sequence[RealVar]) -> None:
        if not observables:
            raise ValueError(f"PDF '{name}' needs at least one observable.")
        for obs in observables:
            if not obs.has_range:
                raise ValueError(f"Observable '{obs.name}' of PDF '{name}' needs a finite range.")
        self.name = name
        self._observables = unique_vars(observables)

    def __repr__(self) -> str:
        obs = ", ".join(o.name for o in self._observables)
        return f"{self.__class__.__name__}({self.name!r}, observables=[{obs}])"

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------
    @property
    def observables(self) -> list[RealVar]:
        return list(self._observables)

    def _own_parameters(self) -> list[RealVar]:
        """Variables this PDF uses directly (observables are filtered out)."""
        return []

    def parameters(self) -> list[RealVar]:
        """Every parameter of this PDF and of its components."""
        obs_ids = {id(o) for o in self._observables}
        params = [p for p in self._own_parameters() if id(p) not in obs_ids]
        for component in self.components():
            if component is not self:
                params.extend(p for p in component.parameters() if id(p) not in obs_ids)
        return unique_vars(params)

    def floating_parameters(self) -> list[RealVar]:
        return [p for p in self.parameters() if not p.constant]

    def components(self) -> list[Pdf]:
        """Direct sub-PDFs (the PDF itself for primitives)."""
        return [self]

    def find_component(self, name: str) -> Pdf:
        """
        Look up a PDF by name in the component tree.

        Raises:
            KeyError: If no component has this name.
        """
        if self.name == name:
            return self
        for component in self.components():
            if component is not self:
                try:
                    return component.find_component(name)
                except KeyError:
                    continue
        raise KeyError(f"No component named '{name}' in PDF '{self.name}'.")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def values_of(self, data: DataLike, observable: RealVar) -> npt.NDArray[np.float64]:
        """
        Extract the values of one observable from `data`.

        Plain arrays are accepted for one-dimensional PDFs.
        """
        if isinstance(data, (np.ndarray, list, tuple)):
            if len(self._observables) != 1:
                raise ValueError(f"PDF '{self.name}' has several observables, pass a mapping of columns.")
            return np.asarray(data, dtype=np.float64)
        try:
            values = data[observable.name]
        except KeyError:
            raise KeyError(f"Observable '{observable.name}' not found in data.") from None
        return np.asarray(values, dtype=np.float64)

    @abstractmethod
    def evaluate(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        """
        Unnormalized PDF values.

        Args:
            data: Observable values (mapping of columns, Dataset or array).
            batch: Evaluate with the compiled kernels in one call per array,
                otherwise with one Python call per event.
        """
        pass

    @abstractmethod
    def normalization(self) -> float:
        """Integral of `evaluate` over the observable ranges."""
        pass

    def pdf(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        """Normalized density."""
        return self.evaluate(data, batch=batch) / self.normalization()

    def log_pdf(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.log(self.pdf(data, batch=batch))

    # ------------------------------------------------------------------
    # Extended likelihood
    # ------------------------------------------------------------------
    def can_be_extended(self) -> bool:
        return False

    def expected_events(self) -> float:
        """Expected number of events of an extended PDF (0 otherwise)."""
        return 0.0

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        """Draw `n` events by accept/reject against the maximum on a grid."""
        if len(self._observables) != 1:
            raise NotImplementedError(f"{self.__class__.__name__} cannot generate several observables.")
        obs = self._observables[0]
        grid = np.linspace(obs.lo, obs.hi, 2001)
        bound = 1.1 * float(np.nanmax(self.evaluate(grid)))
        if not np.isfinite(bound) or bound <= 0:
            raise ValueError(f"PDF '{self.name}' cannot be sampled with the current parameters.")

        accepted: list[npt.NDArray[np.float64]] = [np.empty(0)]
        n_accepted = 0
        while n_accepted < n:
            size = max(2 * (n - n_accepted), 1000)
            x = rng.uniform(obs.lo, obs.hi, size)
            keep = x[rng.uniform(0.0, bound, size) < self.evaluate(x)]
            accepted.append(keep)
            n_accepted += keep.size
        return {obs.name: np.concatenate(accepted)[:n]}

    def generate(self, n: Optional[int] = None, rng: Optional[np.random.Generator] = None, extended: bool = False) -> Dataset:
        """
        Generate a toy dataset.

        Args:
            n: Number of events. Defaults to the expected events of an extended PDF.
            rng: Random generator (a fresh unseeded one by default).
            extended: Draw the number of events from a Poisson distribution.

        Returns:
            Unweighted dataset over the observables of this PDF.
        """
        rng = rng if rng is not None else np.random.default_rng()
        if n is None:
            if not self.can_be_extended():
                raise ValueError(f"PDF '{self.name}' is not extended, the number of events is required.")
            n = int(round(self.expected_events()))
        if n < 0:
            raise ValueError(f"Number of events must be >= 0, got {n}.")
        if extended:
            mean = self.expected_events() if self.can_be_extended() else n
            n = int(rng.poisson(mean))

        logger.debug(f"Generating {n} events from PDF '{self.name}'")
        columns = self._sample(n, rng)
        return Dataset.from_arrays(self._observables, columns, name=f"{self.name}Data")

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------
    def fit_to(self, data: Dataset | DataHist, **options: Any) -> FitResult:
        """
        Maximum likelihood fit to `data`, updating the parameters in place.

        Keyword arguments are `FitOptions` fields (print_level, num_cpu,
        batch_mode, extended, strategy, ...).
        """
        from hepfit.fitting import FitOptions, fit

        return fit(self, data, FitOptions(**options))
