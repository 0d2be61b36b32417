"""Run detection along scan lines.

All functions work on a 2-D key array where each row is one scan line.
Run ids are 1-based and increase left to right within a line, so a
composite key of ``run_id * (key_max + 1) + key`` sorts pixels inside
their runs without ever moving them across a run boundary.
"""

import numpy as np


def run_starts(keys: np.ndarray, threshold: float) -> np.ndarray:
    """Mark where a new run begins under brightness-delta segmentation.

    Position 0 of every non-empty line starts a run. Position i > 0 starts a
    run when ``abs(keys[i] - keys[i - 1])`` is strictly greater than
    ``threshold``.
    """
    starts = np.zeros(keys.shape, dtype=bool)
    if keys.shape[1] == 0:
        return starts
    starts[:, 0] = True
    deltas = np.abs(np.diff(keys.astype(np.int64), axis=1))
    starts[:, 1:] = deltas > threshold
    return starts


def accepted_mask(keys: np.ndarray, lower: float, upper: float) -> np.ndarray:
    """Pixels whose key lies in the closed band ``lower..upper``."""
    return (keys >= lower) & (keys <= upper)


def interval_starts(keys: np.ndarray, lower: float, upper: float) -> np.ndarray:
    """Mark run starts under band segmentation.

    Each maximal span of accepted pixels is one run. Every rejected pixel is
    a run of its own, which pins it in place when the line is sorted.
    """
    accepted = accepted_mask(keys, lower, upper)
    # transitions == 1 where the mask goes from False to True
    transitions = np.diff(accepted.astype(np.int8), axis=1, prepend=0)
    return (transitions == 1) | ~accepted


def run_ids(starts: np.ndarray) -> np.ndarray:
    """Number each run of a line 1, 2, 3, ... from its start marks."""
    return np.cumsum(starts, axis=1, dtype=np.int64)


def count_runs(starts: np.ndarray, accepted: np.ndarray | None = None) -> np.ndarray:
    """Runs per line.

    With ``accepted`` given, only runs made of accepted pixels are counted
    (the band segmentation's sortable intervals).
    """
    if accepted is not None:
        starts = starts & accepted
    return starts.sum(axis=1, dtype=np.int64)
