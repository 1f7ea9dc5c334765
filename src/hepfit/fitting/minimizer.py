"""
Minimizer
=========
Minimization of a negative log-likelihood and error analysis.

The floating parameters are mapped onto the unit interval of their ranges
and minimized with L-BFGS-B (scipy.optimize). Strategy 2 polishes the result
with a bounded Powell pass. The covariance matrix is the inverse of a
finite-difference Hessian of the likelihood at the minimum.
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Optional

import numpy as np
from scipy.optimize import OptimizeResult, minimize

from hepfit.fitting.options import FitOptions
from hepfit.fitting.result import FitResult

if TYPE_CHECKING:
    import numpy.typing as npt

    from hepfit.fitting.nll import NLL

logger = logging.getLogger(__name__)

# Relative step of the finite-difference gradient in unit-interval coordinates
GRADIENT_STEP: float = 1e-5
# Hessian steps in units of the estimated parameter error
HESSE_STEP: float = 0.1
# Restarts of the minimization when the distance to the minimum is too large
MAX_RESTARTS: int = 2


class Minimizer:
    """
    Minimizes an `NLL` over the floating parameters of its PDF.
    """
    def __init__(self, nll: NLL, options: Optional[FitOptions] = None) -> None:
        """
        Initialize the minimizer.

        Raises:
            ValueError: If the PDF has no floating parameters.
        """
        self.nll = nll
        self.options = options or FitOptions()
        self.parameters = nll.pdf.floating_parameters()
        if not self.parameters:
            raise ValueError(f"PDF '{nll.pdf.name}' has no floating parameters.")

        self._lo = np.array([p.lo for p in self.parameters], dtype=np.float64)
        self._width = np.array([p.hi - p.lo for p in self.parameters], dtype=np.float64)
        self._best = math.inf
        self.converged = False
        self.hesse_failed = False

    # ------------------------------------------------------------------
    # Parameter handling
    # ------------------------------------------------------------------
    def values(self) -> npt.NDArray[np.float64]:
        return np.array([p.value for p in self.parameters], dtype=np.float64)

    def set_values(self, values: npt.NDArray[np.float64]) -> None:
        for p, v in zip(self.parameters, values):
            p.value = v

    def _to_unit(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return (values - self._lo) / self._width

    def _from_unit(self, u: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return self._lo + np.clip(u, 0.0, 1.0) * self._width

    def _evaluate(self, values: npt.NDArray[np.float64]) -> float:
        self.set_values(values)
        return self.nll()

    def _objective(self, u: npt.NDArray[np.float64]) -> float:
        value = self._evaluate(self._from_unit(u))
        level = self.options.print_level
        improved = value < self._best
        if improved:
            self._best = value
        if level >= 3 or (level == 2 and improved):
            params = ", ".join(f"{p.name}={p.value:.6g}" for p in self.parameters)
            print(f"[#{self.nll.ncalls}] NLL = {value:.10g}{' *' if improved else ''} ({params})")
        return value

    # ------------------------------------------------------------------
    # Minimization
    # ------------------------------------------------------------------
    def _max_calls(self) -> int:
        if self.options.max_calls is not None:
            return self.options.max_calls
        return 200 + 100 * len(self.parameters) + 5 * len(self.parameters) ** 2

    def minimize(self) -> OptimizeResult:
        """
        Run the minimization from the current parameter values.

        The parameters are left at the minimum.
        """
        strategy = self.options.strategy
        ftol = 1e-12 * self.options.tolerance * (100.0 if strategy == 0 else 1.0)
        bounds = [(0.0, 1.0)] * len(self.parameters)
        u0 = self._to_unit(self.values())

        result = minimize(
            self._objective,
            u0,
            method="L-BFGS-B",
            jac="3-point",
            bounds=bounds,
            options={
                "ftol": ftol,
                "gtol": 1e-8,
                "maxfun": self._max_calls(),
                "maxls": 50,
                "finite_diff_rel_step": GRADIENT_STEP,
            },
        )
        logger.debug(f"L-BFGS-B: {result.message} after {result.nfev} calls, fun={result.fun:.10g}")

        if strategy == 2:
            polished = minimize(
                self._objective,
                result.x,
                method="Powell",
                bounds=bounds,
                options={"xtol": 1e-8, "ftol": ftol, "maxfev": self._max_calls()},
            )
            logger.debug(f"Powell: {polished.message} after {polished.nfev} calls, fun={polished.fun:.10g}")
            if polished.fun <= result.fun:
                result.x, result.fun = polished.x, polished.fun

        # L-BFGS-B status 1 means the call or iteration limit was reached
        self.converged = bool(result.status != 1 and np.isfinite(result.fun))
        self._evaluate(self._from_unit(result.x))
        return result

    # ------------------------------------------------------------------
    # Error analysis
    # ------------------------------------------------------------------
    def _steps(self, x0: npt.NDArray[np.float64], f0: float, nll: NLL) -> npt.NDArray[np.float64]:
        """Finite-difference steps from a first estimate of the parameter errors."""
        steps = np.empty_like(x0)
        for i in range(x0.size):
            h = 1e-4 * self._width[i]
            x = x0.copy()
            x[i] = x0[i] + h
            f_plus = self._evaluate_with(nll, x)
            x[i] = x0[i] - h
            f_minus = self._evaluate_with(nll, x)
            d2 = (f_plus - 2.0 * f0 + f_minus) / (h * h)
            sigma = 1.0 / math.sqrt(d2) if d2 > 0 and math.isfinite(d2) else 0.1 * self._width[i]
            steps[i] = min(max(HESSE_STEP * sigma, 1e-10 * self._width[i]), 0.1 * self._width[i])

            # Keep the stencil inside the range where possible
            room = min(self.parameters[i].hi - x0[i], x0[i] - self.parameters[i].lo)
            if room > 1e-8 * self._width[i]:
                steps[i] = min(steps[i], 0.999 * room)
        self.set_values(x0)
        return steps

    def _evaluate_with(self, nll: NLL, values: npt.NDArray[np.float64]) -> float:
        self.set_values(values)
        return nll()

    def hessian(self, nll: Optional[NLL] = None, steps: Optional[npt.NDArray[np.float64]] = None) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Finite-difference Hessian and gradient at the current parameter values.

        Args:
            nll: Likelihood to differentiate (the minimized one by default).
            steps: Step per parameter (estimated from the curvature by default).

        Returns:
            Hessian, gradient and the steps used.
        """
        nll = nll or self.nll
        x0 = self.values()
        n = x0.size
        f0 = self._evaluate_with(nll, x0)
        if steps is None:
            steps = self._steps(x0, f0, nll)

        hess = np.zeros((n, n), dtype=np.float64)
        grad = np.zeros(n, dtype=np.float64)
        f_plus = np.zeros(n)
        f_minus = np.zeros(n)
        for i in range(n):
            x = x0.copy()
            x[i] += steps[i]
            f_plus[i] = self._evaluate_with(nll, x)
            x[i] = x0[i] - steps[i]
            f_minus[i] = self._evaluate_with(nll, x)
            hess[i, i] = (f_plus[i] - 2.0 * f0 + f_minus[i]) / (steps[i] ** 2)
            grad[i] = (f_plus[i] - f_minus[i]) / (2.0 * steps[i])

        for i in range(n):
            for j in range(i + 1, n):
                corners = []
                for si, sj in ((1, 1), (1, -1), (-1, 1), (-1, -1)):
                    x = x0.copy()
                    x[i] += si * steps[i]
                    x[j] += sj * steps[j]
                    corners.append(self._evaluate_with(nll, x))
                value = (corners[0] - corners[1] - corners[2] + corners[3]) / (4.0 * steps[i] * steps[j])
                hess[i, j] = hess[j, i] = value

        self.set_values(x0)
        return hess, grad, steps

    @staticmethod
    def invert(hess: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], bool]:
        """
        Invert a Hessian into a covariance matrix.

        A matrix that is not positive definite is made so by raising its
        smallest eigenvalues.

        Returns:
            Covariance and whether the Hessian was positive definite.
        """
        try:
            np.linalg.cholesky(hess)
            return np.linalg.inv(hess), True
        except np.linalg.LinAlgError:
            eigenvalues, vectors = np.linalg.eigh(0.5 * (hess + hess.T))
            floor = 1e-6 * max(float(np.abs(eigenvalues).max()), 1e-300)
            eigenvalues = np.maximum(eigenvalues, floor)
            return (vectors / eigenvalues) @ vectors.T, False

    def hesse(self, sumw2_nll: Optional[NLL] = None) -> tuple[npt.NDArray[np.float64], float, int]:
        """
        Covariance matrix at the current parameter values.

        Args:
            sumw2_nll: Likelihood with squared weights. If given, the covariance
                is corrected to ``V H2 V`` for weighted data.

        Returns:
            Covariance, estimated distance to the minimum and covariance quality.
        """
        hess, grad, steps = self.hessian()
        cov, positive = self.invert(hess)
        self.hesse_failed = not positive
        if not positive:
            logger.warning(f"Hessian of NLL '{self.nll.pdf.name}' is not positive definite, forced positive definite.")

        edm = float(0.5 * grad @ cov @ grad)
        if sumw2_nll is not None:
            hess2, _, _ = self.hessian(sumw2_nll, steps)
            cov = cov @ hess2 @ cov
        return cov, edm, 3 if positive else 2

    def approximate_covariance(self, result: OptimizeResult) -> tuple[npt.NDArray[np.float64], float]:
        """Covariance and distance to the minimum from the L-BFGS-B inverse Hessian estimate."""
        inverse = np.asarray(result.hess_inv.todense()) if hasattr(result, "hess_inv") else np.eye(len(self.parameters))
        jac = np.asarray(getattr(result, "jac", np.zeros(len(self.parameters))))
        edm = float(0.5 * jac @ inverse @ jac)
        return inverse * np.outer(self._width, self._width), edm

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------
    def run(self, sumw2_nll: Optional[NLL] = None) -> FitResult:
        """
        Minimize, compute errors and collect the result.

        The parameters are updated with the fitted values and errors.
        """
        options = self.options
        names = [p.name for p in self.parameters]
        initial = self.values()
        edm_target = 1e-3 * options.tolerance

        if options.print_level >= 1:
            print(f"Minimizer: minimizing NLL of '{self.nll.pdf.name}' with {len(names)} floating parameter(s) "
                  f"(strategy {options.strategy}, num_cpu {self.nll.num_cpu}, "
                  f"batch mode {'on' if self.nll.batch_mode else 'off'})")

        result = self.minimize()
        if options.hesse:
            cov, edm, quality = self.hesse(sumw2_nll)
            restarts = 0
            while edm > edm_target and options.strategy > 0 and restarts < MAX_RESTARTS:
                restarts += 1
                logger.info(f"EDM {edm:.3g} above {edm_target:.3g}, restarting minimization ({restarts}/{MAX_RESTARTS})")
                result = self.minimize()
                cov, edm, quality = self.hesse(sumw2_nll)
            if edm > edm_target:
                self.converged = False
        else:
            cov, edm = self.approximate_covariance(result)
            quality = 1

        min_nll = self.nll() + self.nll.offset_value
        eval_errors_at_min = self.nll.eval_errors
        errors = np.sqrt(np.abs(np.diag(cov)))
        for p, error in zip(self.parameters, errors):
            p.error = float(error)

        at_limit = [p.name for p in self.parameters if p.at_limit()]
        for name in at_limit:
            logger.warning(f"Parameter '{name}' is at its limit after the fit of '{self.nll.pdf.name}'.")
        if self.nll.total_eval_errors:
            logger.warning(f"{self.nll.total_eval_errors} evaluation error(s) during the fit of '{self.nll.pdf.name}'.")

        if eval_errors_at_min:
            status = 3
        elif not self.converged:
            status = 1
        elif self.hesse_failed:
            status = 2
        else:
            status = 0

        if status == 1:
            logger.warning(f"Minimization of '{self.nll.pdf.name}' did not converge: {result.message}")
        if options.print_level >= 1:
            print(f"Minimizer: finished after {self.nll.ncalls} NLL calls, status {status}, "
                  f"min NLL {min_nll:.10g}, EDM {edm:.3g}")

        constants = {p.name: p.value for p in self.nll.pdf.parameters() if p.constant}
        return FitResult(
            parameter_names=names,
            initial_values=initial,
            values=self.values(),
            errors=errors,
            covariance=cov,
            min_nll=min_nll,
            edm=edm,
            status=status,
            cov_quality=quality,
            ncalls=self.nll.ncalls,
            eval_errors=self.nll.total_eval_errors,
            constant_parameters=constants,
            at_limit=at_limit,
            options=options.to_dict(),
        )
