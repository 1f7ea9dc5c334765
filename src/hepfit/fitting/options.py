from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class FitOptions:
    """
    Options of a maximum likelihood fit.

    Attributes:
        print_level: -1 silent, 0 final summary, 1 start/stop messages,
            2 every improvement of the minimum, 3 every likelihood call.
        num_cpu: Number of threads evaluating the likelihood in parallel.
        batch_mode: Evaluate PDFs with the compiled kernels.
        extended: Add the Poisson term for the number of events. None uses
            the PDF's own setting.
        strategy: 0 fast, 1 default, 2 careful (adds a polishing pass).
        hesse: Compute the covariance matrix after the minimization.
        offset: Subtract the initial likelihood value during minimization.
        sumw2_error: Correct the covariance for weighted data. None enables
            the correction for weighted data and warns.
        max_calls: Limit on likelihood calls (None for automatic).
        tolerance: Convergence tolerance, the minimum is accepted when the
            estimated distance to the minimum is below 1e-3 * tolerance.
    """
    print_level: int = -1
    num_cpu: int = 1
    batch_mode: bool = True
    extended: Optional[bool] = None
    strategy: int = 1
    hesse: bool = True
    offset: bool = False
    sumw2_error: Optional[bool] = None
    max_calls: Optional[int] = None
    tolerance: float = 1.0

    def __post_init__(self) -> None:
        if self.print_level not in (-1, 0, 1, 2, 3):
            raise ValueError(f"print_level must be in -1..3, got {self.print_level}.")
        if not isinstance(self.num_cpu, int) or self.num_cpu < 1:
            raise ValueError(f"num_cpu must be a positive integer, got {self.num_cpu}.")
        if self.strategy not in (0, 1, 2):
            raise ValueError(f"strategy must be 0, 1 or 2, got {self.strategy}.")
        if self.max_calls is not None and self.max_calls < 1:
            raise ValueError(f"max_calls must be positive, got {self.max_calls}.")
        if not self.tolerance > 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}.")

    def replace(self, **changes: Any) -> FitOptions:
        values = self.to_dict()
        values.update(changes)
        return FitOptions(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
