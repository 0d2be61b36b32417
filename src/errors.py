"""Error kinds raised by the sorter and the image codec.

None of these are retryable. Callers abort the current invocation.
"""


class PixelSortError(Exception):
    """Base class for pixel sorter failures."""


class InvalidThreshold(PixelSortError, ValueError):
    """Threshold is not a finite number inside the key's valid range."""

    def __init__(self, threshold, low: float, high: float):
        self.threshold = threshold
        self.low = low
        self.high = high
        super().__init__(f"threshold {threshold!r} outside valid range {low}..{high}")


class UnsupportedFormat(PixelSortError):
    """Input cannot be decoded into a pixel grid, or the target format is not writable."""


class IOFailure(PixelSortError, OSError):
    """Reading or writing an image file failed."""
