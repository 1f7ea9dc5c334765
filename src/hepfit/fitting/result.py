from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

STATUS_MESSAGES: Dict[int, str] = {
    0: "converged",
    1: "minimizer did not converge",
    2: "Hessian not positive definite",
    3: "evaluation errors at the minimum",
}

COVARIANCE_QUALITY: Dict[int, str] = {
    -1: "Unknown, matrix was externally provided",
    0: "Not calculated at all",
    1: "Approximation only, not accurate",
    2: "Full matrix, but forced positive-definite",
    3: "Full, accurate covariance matrix",
}


@dataclass
class FitResult:
    """
    Outcome of a maximum likelihood fit.

    Attributes:
        parameter_names: Floating parameters, in fit order.
        initial_values: Values before the fit.
        values: Values at the minimum.
        errors: Parabolic errors (square root of the covariance diagonal).
        covariance: Covariance matrix of the floating parameters.
        min_nll: Likelihood at the minimum.
        edm: Estimated distance to the minimum.
        status: 0 converged, 1 not converged, 2 Hessian not positive definite,
            3 evaluation errors at the minimum.
        cov_quality: Covariance quality code (see COVARIANCE_QUALITY).
        ncalls: Number of likelihood evaluations.
        eval_errors: Evaluation errors seen during the whole fit.
        wall_time: Real time of the fit in seconds.
        cpu_time: CPU time of the fit in seconds.
        constant_parameters: Values of the constant parameters.
        at_limit: Parameters that ended close to a limit.
        options: Fit options used.
    """
    parameter_names: List[str]
    initial_values: npt.NDArray[np.float64]
    values: npt.NDArray[np.float64]
    errors: npt.NDArray[np.float64]
    covariance: npt.NDArray[np.float64]
    min_nll: float
    edm: float
    status: int
    cov_quality: int = 0
    ncalls: int = 0
    eval_errors: int = 0
    wall_time: float = 0.0
    cpu_time: float = 0.0
    constant_parameters: Dict[str, float] = field(default_factory=dict)
    at_limit: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(status={self.status}, min_nll={self.min_nll:.6f}, "
                f"parameters={dict(zip(self.parameter_names, self.values.tolist()))})")

    @property
    def is_valid(self) -> bool:
        return self.status == 0

    @property
    def status_message(self) -> str:
        return STATUS_MESSAGES.get(self.status, "unknown")

    @property
    def correlation(self) -> npt.NDArray[np.float64]:
        """Correlation matrix derived from the covariance."""
        sigma = np.sqrt(np.abs(np.diag(self.covariance)))
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = self.covariance / np.outer(sigma, sigma)
        return np.nan_to_num(corr)

    def index(self, name: str) -> int:
        try:
            return self.parameter_names.index(name)
        except ValueError:
            raise KeyError(f"No floating parameter named '{name}'.") from None

    def value(self, name: str) -> float:
        return float(self.values[self.index(name)])

    def error(self, name: str) -> float:
        return float(self.errors[self.index(name)])

    def pull(self, name: str, true_value: float) -> float:
        """(fitted - true) / error of a parameter."""
        return (self.value(name) - true_value) / self.error(name)

    def correlation_of(self, first: str, second: str) -> float:
        return float(self.correlation[self.index(first), self.index(second)])

    def __str__(self) -> str:
        lines = [
            "",
            f"  FitResult: minimized NLL value: {self.min_nll:.6g}, estimated distance to minimum: {self.edm:.4g}",
            f"             covariance matrix quality: {COVARIANCE_QUALITY.get(self.cov_quality, 'Unknown')}",
            f"             Status : {self.status} ({self.status_message}), NLL calls: {self.ncalls}, "
            f"evaluation errors: {self.eval_errors}",
            "",
        ]
        if self.constant_parameters:
            lines.append(f"    {'Constant Parameter':>20}    {'Value':>10}")
            lines.append(f"  {'-' * 20}  {'-' * 12}")
            for name, value in self.constant_parameters.items():
                lines.append(f"  {name:>20}  {value:12.4e}")
            lines.append("")

        lines.append(f"  {'Floating Parameter':>20}  {'InitialValue':>12}  {'FinalValue +/-  Error':>26}")
        lines.append(f"  {'-' * 20}  {'-' * 12}  {'-' * 26}")
        for name, initial, value, error in zip(self.parameter_names, self.initial_values, self.values, self.errors):
            flag = "  <- at limit" if name in self.at_limit else ""
            lines.append(f"  {name:>20}  {initial:12.4e}  {value:12.4e} +/- {error:9.2e}{flag}")
        lines.append("")
        return "\n".join(lines)

    def print(self) -> None:
        print(str(self))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parameter_names": list(self.parameter_names),
            "initial_values": np.asarray(self.initial_values, dtype=np.float64),
            "values": np.asarray(self.values, dtype=np.float64),
            "errors": np.asarray(self.errors, dtype=np.float64),
            "covariance": np.asarray(self.covariance, dtype=np.float64),
            "min_nll": float(self.min_nll),
            "edm": float(self.edm),
            "status": int(self.status),
            "cov_quality": int(self.cov_quality),
            "ncalls": int(self.ncalls),
            "eval_errors": int(self.eval_errors),
            "wall_time": float(self.wall_time),
            "cpu_time": float(self.cpu_time),
            "constant_parameters": dict(self.constant_parameters),
            "at_limit": list(self.at_limit),
            "options": dict(self.options),
        }
