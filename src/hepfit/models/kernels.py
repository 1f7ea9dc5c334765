"""
Batch Compute Kernels
=====================
Vectorized PDF evaluation used in batch mode.

Each kernel evaluates one PDF shape over a whole array of events in a single
call. Kernels are compiled by numba for the host CPU (LLVM picks the
instruction set of the machine) and release the GIL, so several threads can
evaluate different event ranges at the same time.

Set ``HEPFIT_DEBUG_DISPATCH=1`` or call ``set_dispatch_debug(True)`` to log
every dispatch.
"""
from __future__ import annotations

import logging
import math
import platform
import threading
from collections import Counter
from typing import TYPE_CHECKING, Any, Callable, Dict

import numba as nb
import numpy as np

from hepfit import config

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

_debug: bool = config.DISPATCH_DEBUG
_counts: Counter[str] = Counter()
_counts_lock = threading.Lock()


@nb.njit(cache=True, fastmath=True, nogil=True)
def gaussian_kernel(
    x: npt.NDArray[np.float64],
    mean: float,
    sigma: float,
    out: npt.NDArray[np.float64],
) -> None:
    """Unnormalized Gaussian exp(-0.5 * ((x - mean) / sigma)^2)."""
    inv_sigma = 1.0 / sigma
    for i in range(x.shape[0]):
        t = (x[i] - mean) * inv_sigma
        out[i] = math.exp(-0.5 * t * t)


@nb.njit(cache=True, fastmath=True, nogil=True)
def exponential_kernel(
    x: npt.NDArray[np.float64],
    c: float,
    out: npt.NDArray[np.float64],
) -> None:
    """Unnormalized exponential exp(c * x)."""
    for i in range(x.shape[0]):
        out[i] = math.exp(c * x[i])


@nb.njit(cache=True, fastmath=True, nogil=True)
def chebychev_kernel(
    x: npt.NDArray[np.float64],
    lo: float,
    hi: float,
    coefficients: npt.NDArray[np.float64],
    out: npt.NDArray[np.float64],
) -> None:
    """
    Chebychev series 1 + sum_k a_k T_k(x'), x' mapped from [lo, hi] to [-1, 1].

    Evaluated with the Clenshaw recurrence.
    """
    n = coefficients.shape[0]
    scale = 2.0 / (hi - lo)
    for i in range(x.shape[0]):
        xp = (x[i] - lo) * scale - 1.0
        b1 = 0.0
        b2 = 0.0
        for k in range(n, 0, -1):
            b0 = coefficients[k - 1] + 2.0 * xp * b1 - b2
            b2 = b1
            b1 = b0
        # The series starts at T_1, T_0 carries the constant 1
        out[i] = 1.0 + xp * b1 - b2


@nb.njit(cache=True, fastmath=True, nogil=True)
def crystal_ball_kernel(
    x: npt.NDArray[np.float64],
    m0: float,
    sigma: float,
    alpha: float,
    n: float,
    out: npt.NDArray[np.float64],
) -> None:
    """Unnormalized Crystal Ball: Gaussian core with a power-law tail."""
    abs_alpha = abs(alpha)
    a = (n / abs_alpha) ** n * math.exp(-0.5 * abs_alpha * abs_alpha)
    b = n / abs_alpha - abs_alpha
    for i in range(x.shape[0]):
        t = (x[i] - m0) / sigma
        if alpha < 0.0:
            t = -t
        if t >= -abs_alpha:
            out[i] = math.exp(-0.5 * t * t)
        else:
            out[i] = a / (b - t) ** n


@nb.njit(cache=True, nogil=True)
def negative_log_sum(
    values: npt.NDArray[np.float64],
    weights: npt.NDArray[np.float64],
) -> tuple[float, int]:
    """
    Compute -sum(w_i * log(v_i)) and count the invalid entries.

    Entries with non-positive or non-finite density are skipped; they are
    counted unless their weight is zero.
    """
    total = 0.0
    n_bad = 0
    for i in range(values.shape[0]):
        v = values[i]
        if v > 0.0 and math.isfinite(v):
            total -= weights[i] * math.log(v)
        elif weights[i] != 0.0:
            n_bad += 1
    return total, n_bad


def set_dispatch_debug(enabled: bool = True) -> None:
    """Log every kernel dispatch."""
    global _debug
    _debug = enabled


def dispatch_counts() -> Dict[str, int]:
    """Number of dispatches per kernel since the last reset."""
    with _counts_lock:
        return dict(_counts)


def reset_dispatch_counts() -> None:
    with _counts_lock:
        _counts.clear()


def dispatch(name: str, kernel: Callable[..., None], x: npt.NDArray[np.float64], *params: Any) -> npt.NDArray[np.float64]:
    """
    Run a compute kernel over an array of events.

    Args:
        name: Kernel name for bookkeeping.
        kernel: One of the compiled kernels of this module.
        x: Observable values.
        *params: Shape parameters, in the kernel's order.

    Returns:
        Kernel output, one value per event.
    """
    x = np.ascontiguousarray(x, dtype=np.float64)
    out = np.empty_like(x)
    with _counts_lock:
        _counts[name] += 1
    if _debug:
        logger.info(f"Dispatching '{name}' for {x.size} events to compiled kernel (cpu: {cpu_name()})")
    kernel(x, *params, out)
    return out


def cpu_name() -> str:
    return nb.config.CPU_NAME or f"host ({platform.machine()})"


def cpu_info() -> Dict[str, Any]:
    """
    Describe the target the batch kernels are compiled for.

    Returns:
        Architecture, CPU name and feature override, numba version and thread count.
    """
    return {
        "machine": platform.machine(),
        "processor": platform.processor() or platform.machine(),
        "cpu_name": cpu_name(),
        "cpu_features": nb.config.CPU_FEATURES or "host default",
        "numba_version": nb.__version__,
        "numba_threads": int(nb.config.NUMBA_NUM_THREADS),
        "dispatch_debug": _debug,
    }
