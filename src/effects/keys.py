"""Per-pixel sort keys.

Every key maps an (H, W, C) uint8 grid to an (H, W) int32 array of
non-negative integers no larger than the key's declared maximum. Integer
keys keep run detection exact: two pixels either differ by more than the
threshold or they do not.
"""

import numpy as np

LUMINANCE_MAX = 255
HUE_MAX = 360
SATURATION_MAX = 255


def _channels(grid: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    return (
        grid[..., 0].astype(np.float64),
        grid[..., 1].astype(np.float64),
        grid[..., 2].astype(np.float64),
    )


def luminance(grid: np.ndarray) -> np.ndarray:
    """Rec. 601 luma: round(0.299R + 0.587G + 0.114B), 0..255."""
    r, g, b = _channels(grid)
    luma = 0.299 * r + 0.587 * g + 0.114 * b
    return np.clip(np.rint(luma), 0, LUMINANCE_MAX).astype(np.int32)


def hue(grid: np.ndarray) -> np.ndarray:
    """HSV hue in whole degrees, 0..359. Greys map to 0."""
    r, g, b = _channels(grid)
    mx = np.maximum(np.maximum(r, g), b)
    mn = np.minimum(np.minimum(r, g), b)
    chroma = mx - mn
    safe = np.where(chroma == 0, 1.0, chroma)

    h = np.select(
        [mx == r, mx == g],
        [(g - b) / safe, 2.0 + (b - r) / safe],
        default=4.0 + (r - g) / safe,
    )
    h = h * 60.0
    h = np.where(h < 0, h + 360.0, h)
    h = np.where(chroma == 0, 0.0, h)
    # Truncate, then fold the 360.0 edge back onto 0
    return (h.astype(np.int32) % HUE_MAX).astype(np.int32)


def saturation(grid: np.ndarray) -> np.ndarray:
    """HSL saturation scaled to 0..255 (truncated)."""
    r, g, b = _channels(grid)
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    mx = np.maximum(np.maximum(r, g), b)
    mn = np.minimum(np.minimum(r, g), b)
    lightness = (mx + mn) / 2.0
    denom = 1.0 - np.abs(2.0 * lightness - 1.0)
    sat = np.where(mx == mn, 0.0, (mx - mn) / np.where(denom == 0, 1.0, denom))
    return np.clip(sat * SATURATION_MAX, 0, SATURATION_MAX).astype(np.int32)
