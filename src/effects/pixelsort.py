"""Pixel Sort — sorts pixels inside runs of each row or column.

A scan line is cut into runs wherever the key jumps by more than the
threshold between neighbours, then every run is stably sorted by the same
key. Run membership is folded into a composite sort key so one argsort per
band handles every run of every line at once.
"""

import logging
import math
from numbers import Real

import numpy as np

from effects import registry, segment
from engine.pipeline import run_bands
from errors import InvalidThreshold

logger = logging.getLogger(__name__)

AXES = {
    "rows": "rows",
    "horizontal": "rows",
    "columns": "columns",
    "vertical": "columns",
}
MODES = ("delta", "interval")

PARAMS: dict = {
    "threshold": {
        "type": "float",
        "min": 0.0,
        "max": 360.0,
        "default": 32.0,
        "label": "Threshold",
    },
    "axis": {
        "type": "choice",
        "choices": ["rows", "columns"],
        "default": "rows",
        "label": "Axis",
    },
    "key": {
        "type": "choice",
        "choices": ["luminance", "hue", "saturation"],
        "default": "luminance",
        "label": "Sort By",
    },
    "reverse": {
        "type": "bool",
        "default": False,
        "label": "Reverse Sort",
    },
    "mode": {
        "type": "choice",
        "choices": list(MODES),
        "default": "delta",
        "label": "Segmentation",
    },
    "upper": {
        "type": "float",
        "min": 0.0,
        "max": 360.0,
        "default": None,
        "label": "Upper Bound",
    },
}


def validate_params(params: dict) -> dict:
    """Resolve defaults for missing parameters and reject malformed ones.

    Unknown keys raise ValueError. Threshold ranges depend on the sort key
    and are checked by resolve_bounds.
    """
    unknown = set(params) - set(PARAMS)
    if unknown:
        raise ValueError(f"unknown parameters: {sorted(unknown)}")

    resolved = {}
    for name, pspec in PARAMS.items():
        value = params.get(name, pspec["default"])
        ptype = pspec["type"]
        if ptype == "choice":
            if name == "axis":
                value = normalize_axis(value)
            elif value not in pspec["choices"]:
                raise ValueError(
                    f"{name} must be one of {pspec['choices']}, got {value!r}"
                )
        elif ptype == "bool":
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be a bool, got {value!r}")
        resolved[name] = value
    return resolved


def normalize_axis(axis: str) -> str:
    """Map axis names and their horizontal/vertical aliases to rows/columns."""
    try:
        return AXES[axis]
    except (KeyError, TypeError):
        raise ValueError(f"axis must be one of {sorted(AXES)}, got {axis!r}") from None


def check_threshold(threshold, key: str = "luminance") -> float:
    """Return ``threshold`` as a float if it lies in ``0..key_max``.

    Raises:
        InvalidThreshold: Not a finite real number, or out of range.
    """
    high = registry.key_max(key)
    if isinstance(threshold, bool) or not isinstance(threshold, Real):
        raise InvalidThreshold(threshold, 0, high)
    value = float(threshold)
    if math.isnan(value) or value < 0 or value > high:
        raise InvalidThreshold(threshold, 0, high)
    return value


def _check_image(image: np.ndarray):
    if not isinstance(image, np.ndarray):
        raise ValueError(f"image must be an ndarray, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"image must have shape (H, W, 3|4), got {image.shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"image must be uint8, got {image.dtype}")


def resolve_bounds(
    threshold, key: str, mode: str, upper=None
) -> tuple[float, float | None]:
    """Validate the threshold (and band upper bound) for ``key`` and ``mode``.

    Returns ``(lower, upper)``; upper is None in delta mode.
    """
    if mode not in MODES:
        raise ValueError(f"mode must be one of {list(MODES)}, got {mode!r}")
    lower = check_threshold(threshold, key)
    if mode == "delta":
        return lower, None
    high = registry.key_max(key) if upper is None else check_threshold(upper, key)
    if high < lower:
        raise InvalidThreshold(threshold, 0, high)
    return lower, high


def _lines(image: np.ndarray, axis: str) -> np.ndarray:
    """View the image as (lines, pixels, channels) along ``axis``."""
    return image if axis == "rows" else image.transpose(1, 0, 2)


def _starts(keys: np.ndarray, lower: float, upper: float | None) -> np.ndarray:
    if upper is None:
        return segment.run_starts(keys, lower)
    return segment.interval_starts(keys, lower, upper)


def sort(
    image: np.ndarray,
    threshold,
    axis: str = "rows",
    *,
    key: str = "luminance",
    reverse: bool = False,
    mode: str = "delta",
    upper=None,
    workers: int | None = None,
) -> np.ndarray:
    """Sort pixels within runs of every scan line.

    Args:
        image:     (H, W, 3|4) uint8 grid. Never modified.
        threshold: Largest key jump that still keeps two neighbours in the
                   same run (delta mode), or the band's lower bound
                   (interval mode). Must lie in ``0..key_max``.
        axis:      "rows" or "columns" ("horizontal"/"vertical" accepted).
        key:       Registered sort key name.
        reverse:   Sort descending instead of ascending.
        mode:      "delta" or "interval".
        upper:     Band upper bound for interval mode (defaults to key_max).
        workers:   Thread count for the band pipeline.

    Returns:
        A new array with the same shape and dtype.

    Raises:
        InvalidThreshold: threshold (or upper) outside the key's range.
        ValueError:       Bad image, axis, key or mode.
    """
    _check_image(image)
    axis = normalize_axis(axis)
    key_info = registry.get(key)
    lower, high = resolve_bounds(threshold, key, mode, upper)

    key_fn = key_info["fn"]
    span = key_info["max"] + 1

    def sort_band(band_in: np.ndarray, band_out: np.ndarray):
        keys = key_fn(band_in).astype(np.int64)
        ids = segment.run_ids(_starts(keys, lower, high))
        order_key = key_info["max"] - keys if reverse else keys
        composite = ids * span + order_key
        order = np.argsort(composite, axis=1, kind="stable")
        band_out[...] = np.take_along_axis(band_in, order[..., np.newaxis], axis=1)

    output = np.empty_like(image)
    if image.size == 0:
        return output

    run_bands(sort_band, _lines(image, axis), _lines(output, axis), workers=workers)
    return output


def count_runs(
    image: np.ndarray,
    threshold,
    axis: str = "rows",
    *,
    key: str = "luminance",
    mode: str = "delta",
    upper=None,
) -> np.ndarray:
    """Number of runs in each scan line.

    In interval mode only spans of accepted pixels are counted.
    """
    _check_image(image)
    axis = normalize_axis(axis)
    key_info = registry.get(key)
    lower, high = resolve_bounds(threshold, key, mode, upper)

    keys = key_info["fn"](_lines(image, axis))
    starts = _starts(keys, lower, high)
    if high is None:
        return segment.count_runs(starts)
    return segment.count_runs(starts, segment.accepted_mask(keys, lower, high))


def apply(image: np.ndarray, params: dict, *, workers: int | None = None) -> np.ndarray:
    """Sort an image from a parameter dict shaped like PARAMS."""
    p = validate_params(params)
    logger.debug(
        "pixelsort threshold=%s axis=%s key=%s mode=%s on %s",
        p["threshold"],
        p["axis"],
        p["key"],
        p["mode"],
        image.shape,
    )
    return sort(
        image,
        p["threshold"],
        p["axis"],
        key=p["key"],
        reverse=p["reverse"],
        mode=p["mode"],
        upper=p["upper"],
        workers=workers,
    )
