"""Lightweight timing utilities for feed performance debugging."""
import time
from contextlib import contextmanager
from typing import Optional, Callable
import logging

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Return current time in milliseconds using high-resolution timer."""
    return time.perf_counter() * 1000


def _emit(message: str, log_fn: Optional[Callable[[str], None]]) -> None:
    (log_fn or logger.debug)(message)


@contextmanager
def time_operation(label: str, log_fn: Optional[Callable[[str], None]] = None, min_ms: float = 0.0):
    """
    Time the wrapped block and log "<label>: <ms>ms".

    Only logs when the block took at least min_ms.

    Example:
        with time_operation("[FEED] tier3 query"):
            books = retriever.fetch_popular(60)
    """
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        if elapsed >= min_ms:
            _emit(f"{label}: {elapsed:.2f}ms", log_fn)


def log_elapsed(start_ms: float, label: str, log_fn: Optional[Callable[[str], None]] = None) -> float:
    """
    Log elapsed time since start_ms and return the current time, for chaining.

    Example:
        t = now_ms()
        t = log_elapsed(t, "auth")
        t = log_elapsed(t, "assemble")
    """
    _emit(f"{label}: {now_ms() - start_ms:.2f}ms", log_fn)
    return now_ms()
