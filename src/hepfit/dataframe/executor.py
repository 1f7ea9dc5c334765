"""
Implicit Multi-Threading
========================
Process-wide switch for parallel event loops, mirroring the "enable implicit
multi-threading" call the analyses make before building a dataframe.

Chunks are processed in a thread pool and results are always returned in
chunk order, so merged results do not depend on the number of threads.
"""
from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_lock = threading.Lock()
_pool_size: int = 0


def enable_implicit_mt(n_threads: Optional[int] = None) -> None:
    """
    Enable parallel event loops.

    Args:
        n_threads: Thread pool size, defaults to the number of CPUs.
    """
    global _pool_size
    if n_threads is not None and n_threads < 1:
        raise ValueError(f"Number of threads must be positive, got {n_threads}.")
    size = n_threads or os.cpu_count() or 1
    with _lock:
        _pool_size = size
    logger.info(f"Implicit multi-threading enabled with {size} thread(s).")


def disable_implicit_mt() -> None:
    global _pool_size
    with _lock:
        _pool_size = 0
    logger.info("Implicit multi-threading disabled.")


def is_implicit_mt_enabled() -> bool:
    return _pool_size > 0


def get_thread_pool_size() -> int:
    """Size of the thread pool, 0 when implicit multi-threading is disabled."""
    return _pool_size


def map_chunks(func: Callable[[T], R], chunks: Iterable[T]) -> list[R]:
    """
    Apply `func` to every chunk, in parallel when implicit MT is enabled.

    Returns:
        Results in the order of `chunks`.
    """
    items = list(chunks)
    n_threads = get_thread_pool_size()
    if n_threads <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=min(n_threads, len(items)), thread_name_prefix="hepfit-loop") as pool:
        return list(pool.map(func, items))
