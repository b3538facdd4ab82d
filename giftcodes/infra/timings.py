# giftcodes/infra/timings.py
from __future__ import annotations
import logging
import statistics
import time
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# one list per kind; single-threaded event loop, no locks
_TIMINGS: Dict[str, List[float]] = {}


def record_timing(kind: str, value: float) -> None:
    _TIMINGS.setdefault(kind, []).append(float(value))


class timeit:
    """async usage:
        async with timeit("inventory.claim"):
            await fn()

    Failed calls are recorded under ``<kind>.error``.
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        kind = self._kind if exc_type is None else f"{self._kind}.error"
        record_timing(kind, time.perf_counter() - self._t0)


def snapshot() -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for kind, vals in sorted(_TIMINGS.items()):
        n = len(vals)
        out[kind] = {
            "n": n,
            "mean_ms": statistics.mean(vals) * 1000 if n else 0.0,
            "std_ms": statistics.stdev(vals) * 1000 if n > 1 else 0.0,
            "max_ms": max(vals) * 1000 if n else 0.0,
        }
    return out


def reset() -> None:
    _TIMINGS.clear()


def log_summary() -> None:
    for kind, stats in snapshot().items():
        logger.info(
            "timing %s n=%d mean=%.2fms std=%.2fms max=%.2fms",
            kind, stats["n"], stats["mean_ms"], stats["std_ms"],
            stats["max_ms"],
        )
