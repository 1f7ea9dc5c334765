"""
Primitive PDFs
==============
One-dimensional shapes with a scalar path (one Python call per event) and a
batch path (one compiled kernel call per array).
"""
from __future__ import annotations

import math
from abc import abstractmethod
from typing import TYPE_CHECKING, Dict, Optional, Sequence

import numpy as np
from numpy.polynomial import chebyshev
from scipy.integrate import quad
from scipy.stats import truncnorm

from hepfit.models import kernels
from hepfit.models.pdf import DataLike, Pdf
from hepfit.models.variables import RealVar, as_var

if TYPE_CHECKING:
    import numpy.typing as npt


def _exp(value: float) -> float:
    """math.exp returning inf instead of raising on overflow, like the compiled kernels."""
    try:
        return math.exp(value)
    except OverflowError:
        return math.inf


def _pow(base: float, exponent: float) -> float:
    try:
        return base ** exponent
    except OverflowError:
        return math.inf


class Pdf1D(Pdf):
    """
    Base class of PDFs over a single observable.
    """
    def __init__(self, name: str, x: RealVar) -> None:
        super().__init__(name, [x])
        self.x = x

    def _valid(self) -> bool:
        """False if the current parameter values are outside the domain of the shape."""
        return True

    @abstractmethod
    def _scalar(self, value: float) -> float:
        """Unnormalized value for a single event."""
        pass

    @abstractmethod
    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """Unnormalized values for an array of events."""
        pass

    @abstractmethod
    def _integral(self, lo: float, hi: float) -> float:
        """Integral of the unnormalized shape over [lo, hi]."""
        pass

    def evaluate(self, data: DataLike, batch: bool = True) -> npt.NDArray[np.float64]:
        values = np.ravel(self.values_of(data, self.x))
        if not self._valid():
            return np.full(values.shape, np.nan)
        if batch:
            return self._batch(values)
        return np.fromiter((self._scalar(v) for v in values), dtype=np.float64, count=values.size)

    def normalization(self) -> float:
        if not self._valid():
            return math.nan
        return self._integral(self.x.lo, self.x.hi)

    def integral(self, lo: Optional[float] = None, hi: Optional[float] = None) -> float:
        """
        Probability content of [lo, hi] (defaults to the observable range).

        Raises:
            ValueError: If the interval is not inside the observable range.
        """
        lo = self.x.lo if lo is None else lo
        hi = self.x.hi if hi is None else hi
        if lo < self.x.lo or hi > self.x.hi or lo > hi:
            raise ValueError(f"Interval [{lo}, {hi}] is not inside the range of '{self.x.name}'.")
        return self._integral(lo, hi) / self.normalization()


class Gaussian(Pdf1D):
    NAME = "Gaussian"

    def __init__(self, x: RealVar, mean: RealVar | float, sigma: RealVar | float, name: str = "gauss") -> None:
        super().__init__(name, x)
        self.mean = as_var(mean, f"{name}_mean")
        self.sigma = as_var(sigma, f"{name}_sigma")

    def _own_parameters(self) -> list[RealVar]:
        return [self.mean, self.sigma]

    def _valid(self) -> bool:
        return self.sigma.value > 0

    def _scalar(self, value: float) -> float:
        t = (value - self.mean.value) / self.sigma.value
        return math.exp(-0.5 * t * t)

    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return kernels.dispatch("gaussian", kernels.gaussian_kernel, values, self.mean.value, self.sigma.value)

    def _integral(self, lo: float, hi: float) -> float:
        mean, sigma = self.mean.value, self.sigma.value
        scale = sigma * math.sqrt(2.0)
        a, b = (lo - mean) / scale, (hi - mean) / scale
        # erfc keeps precision when the interval is far in the upper tail
        if a > 0:
            delta = math.erfc(a) - math.erfc(b)
        else:
            delta = math.erf(b) - math.erf(a)
        return sigma * math.sqrt(math.pi / 2.0) * delta

    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        mean, sigma = self.mean.value, self.sigma.value
        a, b = (self.x.lo - mean) / sigma, (self.x.hi - mean) / sigma
        values = truncnorm.rvs(a, b, loc=mean, scale=sigma, size=n, random_state=rng)
        return {self.x.name: np.clip(np.asarray(values, dtype=np.float64), self.x.lo, self.x.hi)}


class Exponential(Pdf1D):
    """Exponential shape exp(c * x)."""
    NAME = "Exponential"

    def __init__(self, x: RealVar, c: RealVar | float, name: str = "exp") -> None:
        super().__init__(name, x)
        self.c = as_var(c, f"{name}_c")

    def _own_parameters(self) -> list[RealVar]:
        return [self.c]

    def _scalar(self, value: float) -> float:
        return _exp(self.c.value * value)

    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return kernels.dispatch("exponential", kernels.exponential_kernel, values, self.c.value)

    def _integral(self, lo: float, hi: float) -> float:
        c = self.c.value
        if abs(c) < 1e-12:
            return hi - lo
        return (_exp(c * hi) - _exp(c * lo)) / c

    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        c, lo, hi = self.c.value, self.x.lo, self.x.hi
        u = rng.uniform(0.0, 1.0, n)
        if abs(c) < 1e-12:
            values = lo + u * (hi - lo)
        else:
            # Inverse of the cumulative distribution
            values = lo + np.log1p(u * math.expm1(c * (hi - lo))) / c
        return {self.x.name: np.clip(values, lo, hi)}


class Chebychev(Pdf1D):
    """
    Chebychev polynomial series 1 + sum_k a_k T_k(x').

    The observable range is mapped onto [-1, 1]. The coefficients start at
    the first order term, the constant term is fixed to one.
    """
    NAME = "Chebychev"

    def __init__(self, x: RealVar, coefficients: Sequence[RealVar | float], name: str = "cheb") -> None:
        super().__init__(name, x)
        self.coefficients = [as_var(c, f"{name}_a{i + 1}") for i, c in enumerate(coefficients)]

    def _own_parameters(self) -> list[RealVar]:
        return list(self.coefficients)

    def _series(self) -> npt.NDArray[np.float64]:
        return np.array([1.0, *(c.value for c in self.coefficients)], dtype=np.float64)

    def _map(self, value: float | npt.NDArray[np.float64]) -> float | npt.NDArray[np.float64]:
        return 2.0 * (value - self.x.lo) / (self.x.hi - self.x.lo) - 1.0

    def _scalar(self, value: float) -> float:
        xp = float(self._map(value))
        b1 = b2 = 0.0
        for coefficient in reversed(self.coefficients):
            b1, b2 = coefficient.value + 2.0 * xp * b1 - b2, b1
        return 1.0 + xp * b1 - b2

    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        coefficients = np.array([c.value for c in self.coefficients], dtype=np.float64)
        return kernels.dispatch("chebychev", kernels.chebychev_kernel, values, self.x.lo, self.x.hi, coefficients)

    def _integral(self, lo: float, hi: float) -> float:
        antiderivative = chebyshev.chebint(self._series())
        delta = chebyshev.chebval(self._map(hi), antiderivative) - chebyshev.chebval(self._map(lo), antiderivative)
        return float(delta) * 0.5 * (self.x.hi - self.x.lo)


class CrystalBall(Pdf1D):
    """
    Crystal Ball shape: Gaussian core and a power-law tail below m0 - alpha * sigma.

    A negative alpha puts the tail on the high side. The normalization is
    computed numerically.
    """
    NAME = "Crystal Ball"

    def __init__(
        self,
        x: RealVar,
        m0: RealVar | float,
        sigma: RealVar | float,
        alpha: RealVar | float,
        n: RealVar | float,
        name: str = "cb",
    ) -> None:
        super().__init__(name, x)
        self.m0 = as_var(m0, f"{name}_m0")
        self.sigma = as_var(sigma, f"{name}_sigma")
        self.alpha = as_var(alpha, f"{name}_alpha")
        self.n = as_var(n, f"{name}_n")

    def _own_parameters(self) -> list[RealVar]:
        return [self.m0, self.sigma, self.alpha, self.n]

    def _valid(self) -> bool:
        return self.sigma.value > 0 and self.alpha.value != 0 and self.n.value > 0

    def _scalar(self, value: float) -> float:
        m0, sigma, alpha, n = self.m0.value, self.sigma.value, self.alpha.value, self.n.value
        t = (value - m0) / sigma
        if alpha < 0:
            t = -t
        abs_alpha = abs(alpha)
        if t >= -abs_alpha:
            return math.exp(-0.5 * t * t)
        a = _pow(n / abs_alpha, n) * math.exp(-0.5 * abs_alpha * abs_alpha)
        b = n / abs_alpha - abs_alpha
        return a / _pow(b - t, n)

    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return kernels.dispatch(
            "crystal_ball", kernels.crystal_ball_kernel, values,
            self.m0.value, self.sigma.value, self.alpha.value, self.n.value,
        )

    def _integral(self, lo: float, hi: float) -> float:
        transition = self.m0.value - self.alpha.value * self.sigma.value
        points = [p for p in (transition, self.m0.value) if lo < p < hi]
        value, _ = quad(self._scalar, lo, hi, points=points or None, limit=200)
        return value


class Uniform(Pdf1D):
    """Flat PDF over the observable range."""
    NAME = "Uniform"

    def __init__(self, x: RealVar, name: str = "uniform") -> None:
        super().__init__(name, x)

    def _scalar(self, value: float) -> float:
        return 1.0

    def _batch(self, values: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return np.ones_like(values)

    def _integral(self, lo: float, hi: float) -> float:
        return hi - lo

    def _sample(self, n: int, rng: np.random.Generator) -> Dict[str, npt.NDArray[np.float64]]:
        return {self.x.name: rng.uniform(self.x.lo, self.x.hi, n)}
