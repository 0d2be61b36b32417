"""Band pipeline — runs a per-line transform across worker threads.

Scan lines are independent, so the image is cut into contiguous bands of
lines and each band is handed to a worker that writes only into its own
slice of the output. Leaving the executor is the only barrier.

Includes rolling timing stats per operation and a slow-call warning.
"""

import logging
import os
import threading
import time
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)

# Bands smaller than this are not worth a thread hop
MIN_BAND_LINES = 16

# Upper bound on worker threads regardless of configuration
MAX_WORKERS = 64

# Per-call timing threshold (milliseconds)
SORT_WARN_MS = 1000

BandFn = Callable[[np.ndarray, np.ndarray], None]

_timing_lock = threading.Lock()
_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def resolve_workers(workers: int | None = None) -> int:
    """Pick a worker count: explicit argument, then PIXELSORT_WORKERS, then CPU count."""
    if workers is None:
        env = os.environ.get("PIXELSORT_WORKERS", "")
        if env:
            try:
                workers = int(env)
            except ValueError:
                logger.warning("Ignoring non-integer PIXELSORT_WORKERS=%r", env)
            else:
                if workers < 1:
                    logger.warning("Ignoring PIXELSORT_WORKERS=%r below 1", env)
                    workers = None
    if workers is None:
        workers = os.cpu_count() or 1
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return min(workers, MAX_WORKERS)


def split_bands(n_lines: int, workers: int) -> list[tuple[int, int]]:
    """Cut ``n_lines`` into at most ``workers`` contiguous (start, stop) bands."""
    if n_lines == 0:
        return []
    count = max(1, min(workers, n_lines // MIN_BAND_LINES))
    edges = np.linspace(0, n_lines, count + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def record_timing(op: str, elapsed_ms: float):
    """Record a timing sample for an operation."""
    with _timing_lock:
        _timing[op].append(elapsed_ms)


def get_sort_stats() -> dict[str, dict]:
    """Return p50/p95/max per operation."""
    with _timing_lock:
        snapshot = {op: sorted(samples) for op, samples in _timing.items()}
    result = {}
    for op, s in snapshot.items():
        result[op] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    with _timing_lock:
        _timing.clear()


def run_bands(
    fn: BandFn,
    lines_in: np.ndarray,
    lines_out: np.ndarray,
    workers: int | None = None,
    op: str = "pixelsort",
) -> None:
    """Apply ``fn(band_in, band_out)`` to every band of lines.

    Args:
        fn:        Transform writing its result into ``band_out``.
        lines_in:  (N, L, C) array, one scan line per leading index.
        lines_out: Array of the same shape receiving the result.
        workers:   Thread count (see resolve_workers).
        op:        Name under which timing is recorded.

    Raises:
        Whatever ``fn`` raises; the first failing band's exception propagates.
    """
    if lines_in.shape != lines_out.shape:
        raise ValueError(
            f"output shape {lines_out.shape} does not match input {lines_in.shape}"
        )

    n_workers = resolve_workers(workers)
    bands = split_bands(lines_in.shape[0], n_workers)

    t0 = time.monotonic()
    if len(bands) <= 1:
        fn(lines_in, lines_out)
    else:
        with ThreadPoolExecutor(max_workers=len(bands)) as pool:
            futures = [
                pool.submit(fn, lines_in[a:b], lines_out[a:b]) for a, b in bands
            ]
            for future in futures:
                future.result()
    elapsed_ms = (time.monotonic() - t0) * 1000

    record_timing(op, elapsed_ms)
    if elapsed_ms > SORT_WARN_MS:
        logger.warning(
            "%s took %.0fms (>%dms warn threshold) on %d lines across %d bands",
            op,
            elapsed_ms,
            SORT_WARN_MS,
            lines_in.shape[0],
            len(bands),
        )
    else:
        logger.debug(
            "%s took %.1fms on %d lines across %d bands",
            op,
            elapsed_ms,
            lines_in.shape[0],
            len(bands),
        )
