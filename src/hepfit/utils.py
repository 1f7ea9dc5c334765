from __future__ import annotations

import functools
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import awkward as ak
import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def timer(func: F) -> F:
    """Log the wall time of every call of the decorated function."""
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.info(f"{func.__qualname__} finished in {elapsed:.3f} s")
    return wrapper  # type: ignore[return-value]


class Stopwatch:
    """
    Measures real (wall) and CPU time of a code block.

    Usage:
        with Stopwatch() as sw:
            ...
        print(sw.real_time, sw.cpu_time)
    """
    def __init__(self) -> None:
        self.real_time: float = 0.0
        self.cpu_time: float = 0.0
        self._t0: float = 0.0
        self._c0: float = 0.0

    def __enter__(self) -> Stopwatch:
        self._t0 = time.perf_counter()
        self._c0 = time.process_time()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.real_time = time.perf_counter() - self._t0
        self.cpu_time = time.process_time() - self._c0


def is_awkward(array: Any) -> bool:
    """True for awkward arrays."""
    return isinstance(array, ak.Array)


def is_jagged(array: Any) -> bool:
    """True for per-event collections (awkward arrays or 2D numpy arrays)."""
    if is_awkward(array):
        return array.ndim > 1
    return isinstance(array, np.ndarray) and array.ndim > 1


def as_column(array: Any) -> Any:
    """
    Normalize a column to a 1D float/int/bool numpy array when it is flat,
    otherwise keep the awkward representation.
    """
    if is_awkward(array):
        # Missing values (elements of too short collections) stay awkward
        if array.ndim == 1 and not ak.any(ak.is_none(array)):
            return np.ma.getdata(ak.to_numpy(array, allow_missing=True))
        return array
    return np.asarray(array)


def flatten(array: Any) -> npt.NDArray[Any]:
    """Flatten a flat or jagged column into a 1D numpy array, dropping missing values."""
    if is_awkward(array):
        return ak.to_numpy(ak.flatten(array, axis=None))
    return np.ravel(np.asarray(array))


def concatenate(parts: list[Any]) -> Any:
    """Concatenate column chunks, keeping awkward arrays awkward."""
    if not parts:
        return np.empty(0, dtype=np.float64)
    if any(is_awkward(p) for p in parts):
        return ak.concatenate(parts, axis=0)
    return np.concatenate(parts)
