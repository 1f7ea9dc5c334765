from __future__ import annotations

import math
from typing import Iterable, Iterator, Optional


class RealVar:
    """
    A named real-valued variable with a range.

    The same class describes observables (the range is the domain of the
    PDF) and parameters (the range bounds the fit).
    """
    def __init__(
        self,
        name: str,
        value: float,
        lo: Optional[float] = None,
        hi: Optional[float] = None,
        unit: str = "",
        title: str = "",
        constant: bool = False,
    ) -> None:
        """
        Initialize the variable.

        Args:
            name: Unique name, used as column name for observables.
            value: Initial value.
            lo: Lower limit. A variable without limits is constant.
            hi: Upper limit.
            unit: Unit shown on plot axes.
            title: Descriptive title.
            constant: Keep the variable fixed in fits.

        Raises:
            ValueError: If only one limit is given or lo >= hi.
        """
        if (lo is None) != (hi is None):
            raise ValueError(f"RealVar '{name}': both limits or none must be given.")
        if lo is not None and hi is not None and not lo < hi:
            raise ValueError(f"RealVar '{name}': invalid range [{lo}, {hi}].")

        self.name = name
        self.title = title or name
        self.unit = unit
        self.lo = float(lo) if lo is not None else -math.inf
        self.hi = float(hi) if hi is not None else math.inf
        self.constant = constant or lo is None
        self.error: float = 0.0
        self._value = 0.0
        self.value = value

    def __repr__(self) -> str:
        state = "C" if self.constant else f"+/- {self.error:.4g}"
        return f"{self.__class__.__name__}({self.name}={self._value:.6g} {state} in [{self.lo}, {self.hi}])"

    @property
    def value(self) -> float:
        return self._value

    @value.setter
    def value(self, value: float) -> None:
        # Values outside the range are clipped to the range
        self._value = min(max(float(value), self.lo), self.hi)

    @property
    def has_range(self) -> bool:
        return math.isfinite(self.lo) and math.isfinite(self.hi)

    @property
    def range(self) -> tuple[float, float]:
        return self.lo, self.hi

    def set_range(self, lo: float, hi: float) -> None:
        if not lo < hi:
            raise ValueError(f"RealVar '{self.name}': invalid range [{lo}, {hi}].")
        self.lo, self.hi = float(lo), float(hi)
        self.value = self._value

    def set_constant(self, constant: bool = True) -> None:
        self.constant = constant

    def at_limit(self, tolerance: float = 1e-3) -> bool:
        """True if the value sits within a relative `tolerance` of a limit."""
        if not self.has_range:
            return False
        margin = tolerance * (self.hi - self.lo)
        return self._value - self.lo < margin or self.hi - self._value < margin

    @property
    def label(self) -> str:
        return f"{self.title} [{self.unit}]" if self.unit else self.title


def as_var(value: RealVar | float, name: str) -> RealVar:
    """Wrap a plain number into a constant variable."""
    if isinstance(value, RealVar):
        return value
    return RealVar(name, float(value))


def unique_vars(variables: Iterable[RealVar]) -> list[RealVar]:
    """Deduplicate variables by identity, keeping the first occurrence."""
    seen: set[int] = set()
    out: list[RealVar] = []
    for var in variables:
        if id(var) not in seen:
            seen.add(id(var))
            out.append(var)
    return out


class ParameterSnapshot:
    """Saves and restores parameter values and errors."""

    def __init__(self, parameters: Iterable[RealVar]) -> None:
        self._state = [(p, p.value, p.error, p.constant) for p in parameters]

    def __iter__(self) -> Iterator[tuple[RealVar, float]]:
        return ((p, v) for p, v, _, _ in self._state)

    def restore(self) -> None:
        for p, value, error, constant in self._state:
            p.value = value
            p.error = error
            p.constant = constant
