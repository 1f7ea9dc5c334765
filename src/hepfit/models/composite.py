from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional, Sequence

import numpy as np

from hepfit.models.pdf import DataLike, Pdf
from hepfit.models.variables import RealVar, as_var

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class AddPdf(Pdf):
    """
    Sum of PDFs over the same observables.

    With one coefficient less than PDFs, the coefficients are fractions and
    the last PDF takes the remainder. With as many coefficients as PDFs, the
    coefficients are yields and the sum is an extended PDF.
    """
    NAME = "Sum"

    def __init__(
        self,
        pdfs: Sequence[Pdf],
        coefficients: Sequence[RealVar | float],
        name: str = "model",
    ) -> None:
        if len(pdfs) < 2:
            raise ValueError("AddPdf needs at least two PDFs.")
        if len(coefficients) == len(pdfs) - 1:
            self.extended = False
        elif len(coefficients) == len(pdfs):
            self.extended = True
        else:
            raise ValueError(
                f"AddPdf with {len(pdfs)} PDFs needs {len(pdfs) - 1} fractions or {len(pdfs)} yields, "
                f"got {len(coefficients)} coefficients."
            )

        names = {o.name for o in pdfs[0].observables}
        for pdf in pdfs[1:]:
            if {o.name for o in pdf.observables} != names:
                raise ValueError(f"Components of AddPdf '{name}' must share the same observables.")

        super().__init__(name, pdfs[0].observables)
        self.pdfs = list(pdfs)
        self.coefficients = [as_var(c, f"{name}_coef{i}") for i, c in enumerate(coefficients)]

    def components(self) -> list[Pdf]:
        return list(self.pdfs)

    def _own_parameters(self) -> list[RealVar]:
        return list(self.coefficients)

    def fractions(self) -> list[float]:
        """Fraction of each component (sums to one)."""
        values = [c.value for c in self.coefficients]
        if self.extended:
            total = sum(values)
            return [v / total if total else 0.0 for v in values]
        return [*values, 1.0 - sum(values)]

    def can_be_extended(self) -> bool:
        return self.extended

    def expected_events(self) -> float:
        if not self.extended:
            return 0.0
        return float(sum(c.value for c in self.coefficients))

    def evaluate(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        fractions = self.fractions()
        total: Optional[npt.NDArray[np.float64]] = None
        for fraction, pdf in zip(fractions, self.pdfs):
            term = fraction * pdf.pdf(data, batch=batch)
            total = term if total is None else total + term
        assert total is not None
        return total

    def normalization(self) -> float:
        # Components are normalized and the fractions sum to one
        return 1.0

    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        fractions = np.asarray(self.fractions(), dtype=np.float64)
        if np.any(fractions < 0) or not np.isfinite(fractions).all():
            raise ValueError(f"Cannot generate from '{self.name}': negative fractions {fractions.tolist()}.")
        counts = rng.multinomial(n, fractions / fractions.sum())

        parts = [pdf._sample(int(k), rng) for pdf, k in zip(self.pdfs, counts)]
        order = rng.permutation(n)
        return {
            obs.name: np.concatenate([part[obs.name] for part in parts])[order]
            for obs in self.observables
        }


class ProdPdf(Pdf):
    """
    Product of PDFs over disjoint sets of observables.
    """
    NAME = "Product"

    def __init__(self, pdfs: Sequence[Pdf], name: str = "prod") -> None:
        if len(pdfs) < 2:
            raise ValueError("ProdPdf needs at least two PDFs.")
        seen: set[str] = set()
        observables: list[RealVar] = []
        for pdf in pdfs:
            for obs in pdf.observables:
                if obs.name in seen:
                    raise ValueError(f"Observable '{obs.name}' appears in more than one factor of '{name}'.")
                seen.add(obs.name)
                observables.append(obs)

        super().__init__(name, observables)
        self.pdfs = list(pdfs)

    def components(self) -> list[Pdf]:
        return list(self.pdfs)

    def can_be_extended(self) -> bool:
        return sum(pdf.can_be_extended() for pdf in self.pdfs) == 1

    def expected_events(self) -> float:
        for pdf in self.pdfs:
            if pdf.can_be_extended():
                return pdf.expected_events()
        return 0.0

    def evaluate(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        total: Optional[npt.NDArray[np.float64]] = None
        for pdf in self.pdfs:
            term = pdf.pdf(data, batch=batch)
            total = term if total is None else total * term
        assert total is not None
        return total

    def normalization(self) -> float:
        return 1.0

    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        columns: Dict[str, npt.NDArray[np.float64]] = {}
        for pdf in self.pdfs:
            columns.update(pdf._sample(n, rng))
        return columns
