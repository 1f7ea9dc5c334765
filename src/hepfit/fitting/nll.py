"""
Negative Log-Likelihood
=======================
Unbinned and binned likelihoods, optionally evaluated by several threads.

The event range is split into `num_cpu` contiguous chunks. Each chunk is
evaluated by one worker; the compiled kernels release the GIL, so the
chunks run concurrently. Chunk results are summed in chunk order.
"""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import numpy as np

from hepfit.data import DataHist, Dataset
from hepfit.models.kernels import negative_log_sum

if TYPE_CHECKING:
    import numpy.typing as npt

    from hepfit.models.pdf import Pdf

logger = logging.getLogger(__name__)

# Added to the likelihood for every event with an invalid density
EVAL_ERROR_PENALTY: float = 10.0


class _Chunk:
    __slots__ = ("columns", "weights", "widths")

    def __init__(
        self,
        columns: Dict[str, npt.NDArray[np.float64]],
        weights: npt.NDArray[np.float64],
        widths: Optional[npt.NDArray[np.float64]] = None,
    ) -> None:
        self.columns = columns
        self.weights = weights
        self.widths = widths


class NLL:
    """
    Negative log-likelihood of a PDF given data.

    Unbinned data: ``-sum_i w_i log p(x_i)``, plus ``nu - N log nu`` when
    extended. Binned data: Poisson likelihood ``sum_b (mu_b - n_b log mu_b)``
    with ``mu_b = nu * p(center_b) * width_b``.

    Calling the object evaluates it at the current parameter values.
    """
    def __init__(
        self,
        pdf: Pdf,
        data: Union[Dataset, DataHist],
        extended: Optional[bool] = None,
        batch_mode: bool = True,
        num_cpu: int = 1,
        offset: bool = False,
        weight_power: int = 1,
    ) -> None:
        """
        Initialize the likelihood.

        Args:
            pdf: Model.
            data: Unbinned or binned data containing every observable of the model.
            extended: Add the extended term (None: if the model is extended).
            batch_mode: Evaluate the model with the compiled kernels.
            num_cpu: Number of worker threads.
            offset: Subtract the first valid value from every evaluation.
            weight_power: Power applied to the event weights (2 for the
                squared-weight likelihood of the sum-w2 correction).

        Raises:
            KeyError: If an observable is missing in the data.
            ValueError: If an extended likelihood is requested for a non-extended model.
        """
        for obs in pdf.observables:
            if obs.name not in data:
                raise KeyError(f"Observable '{obs.name}' of PDF '{pdf.name}' not in dataset '{data.name}'.")
        if extended is None:
            extended = pdf.can_be_extended()
        elif extended and not pdf.can_be_extended():
            raise ValueError(f"PDF '{pdf.name}' is not extended, an extended likelihood is not possible.")
        if num_cpu < 1:
            raise ValueError(f"num_cpu must be >= 1, got {num_cpu}.")

        self.pdf = pdf
        self.data = data
        self.extended = extended
        self.batch_mode = batch_mode
        self.num_cpu = num_cpu
        self.offset = offset
        self.binned = isinstance(data, DataHist)

        names = [obs.name for obs in pdf.observables]
        columns = {name: np.asarray(data[name], dtype=np.float64) for name in names}
        weights = np.asarray(data.weights, dtype=np.float64) ** weight_power
        widths = data.binning.widths if isinstance(data, DataHist) else None
        self.sum_weights = float(weights.sum())

        bounds = np.linspace(0, len(weights), min(num_cpu, max(len(weights), 1)) + 1).astype(int)
        self._chunks = [
            _Chunk(
                {k: v[lo:hi] for k, v in columns.items()},
                weights[lo:hi],
                widths[lo:hi] if widths is not None else None,
            )
            for lo, hi in zip(bounds[:-1], bounds[1:])
        ]
        self._pool = ThreadPoolExecutor(max_workers=num_cpu, thread_name_prefix="nll") if num_cpu > 1 else None

        self.ncalls: int = 0
        self.eval_errors: int = 0
        self.total_eval_errors: int = 0
        self._offset_value: Optional[float] = None
        self._max_valid: Optional[float] = None

        logger.debug(
            f"Created {'binned' if self.binned else 'unbinned'}{' extended' if extended else ''} NLL "
            f"of '{pdf.name}' over {len(weights)} entries, {len(self._chunks)} chunk(s)"
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(pdf={self.pdf.name!r}, data={self.data.name!r}, num_cpu={self.num_cpu})"

    def __enter__(self) -> NLL:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        """Shut down the worker threads."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def _expected(self) -> float:
        return self.pdf.expected_events() if self.extended else self.sum_weights

    def _evaluate_chunk(self, chunk: _Chunk) -> tuple[float, int]:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            density = np.ascontiguousarray(self.pdf.pdf(chunk.columns, batch=self.batch_mode), dtype=np.float64)
            if chunk.widths is None:
                return negative_log_sum(density, chunk.weights)

            mu = self._expected() * density * chunk.widths
            log_term, n_bad = negative_log_sum(mu, chunk.weights)
            finite = np.isfinite(mu)
            return float(mu[finite].sum()) + log_term, n_bad

    def raw_value(self) -> tuple[float, int]:
        """Likelihood value without offset and penalty, and the number of invalid entries."""
        if self._pool is not None and len(self._chunks) > 1:
            results = list(self._pool.map(self._evaluate_chunk, self._chunks))
        else:
            results = [self._evaluate_chunk(chunk) for chunk in self._chunks]

        value = math.fsum(r[0] for r in results)
        n_bad = sum(r[1] for r in results)

        if self.extended and not self.binned:
            nu = self.pdf.expected_events()
            if nu > 0 and math.isfinite(nu):
                value += nu - self.sum_weights * math.log(nu)
            else:
                n_bad += 1
        return value, n_bad

    def __call__(self) -> float:
        value, n_bad = self.raw_value()
        self.ncalls += 1
        self.eval_errors = n_bad

        if n_bad:
            self.total_eval_errors += n_bad
            logger.debug(f"NLL '{self.pdf.name}': {n_bad} evaluation error(s) at {self.parameter_values()}")
            base = self._max_valid if self._max_valid is not None else 1.0e10
            value = base + EVAL_ERROR_PENALTY * n_bad
        else:
            self._max_valid = value if self._max_valid is None else max(self._max_valid, value)

        if self.offset:
            if self._offset_value is None and not n_bad:
                self._offset_value = value
            if self._offset_value is not None:
                value -= self._offset_value
        return value

    @property
    def offset_value(self) -> float:
        return self._offset_value or 0.0

    def parameter_values(self) -> Dict[str, float]:
        return {p.name: p.value for p in self.pdf.floating_parameters()}
