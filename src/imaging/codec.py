"""Image decoding/encoding via Pillow.

Decoded images are (H, W, 4) RGBA uint8 arrays marked read-only. Encoding
goes through a temporary file in the target directory, so a failed write
never leaves a partial image at the destination.
"""

import logging
import os
import tempfile
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from errors import IOFailure, UnsupportedFormat
from security import (
    ALLOWED_EXTENSIONS,
    ALLOWED_OUTPUT_EXTENSIONS,
    validate_input_image,
    validate_output_path,
    validate_pixel_count,
)

logger = logging.getLogger(__name__)

JPEG_EXTENSIONS = {".jpg", ".jpeg"}
JPEG_QUALITY = 95


def sorted_name(path: str) -> str:
    """Output file name for a single sort of ``path``."""
    return f"sorted-{Path(path).name}"


def decode(path: str) -> np.ndarray:
    """Decode an image file into a read-only RGBA uint8 array.

    Raises:
        IOFailure:         File missing, a symlink, too large, or unreadable.
        UnsupportedFormat: Extension not allowed or data not decodable.
    """
    if Path(path).suffix.lower() not in ALLOWED_EXTENSIONS:
        raise UnsupportedFormat(f"Cannot decode {path}: extension not allowed")
    errors = validate_input_image(path)
    if errors:
        raise IOFailure(f"Cannot read {path}: {'; '.join(errors)}")

    try:
        with Image.open(path) as img:
            errors = validate_pixel_count(*img.size)
            if errors:
                raise UnsupportedFormat(f"Cannot decode {path}: {errors[0]}")
            frame = np.array(img.convert("RGBA"))
    except (FileNotFoundError, PermissionError, IsADirectoryError) as e:
        raise IOFailure(f"Cannot read {path}: {type(e).__name__}") from e
    except UnidentifiedImageError as e:
        raise UnsupportedFormat(f"Cannot decode {path}: unrecognized image data") from e
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise UnsupportedFormat(f"Cannot decode {path}: {e}") from e

    frame.flags.writeable = False
    logger.debug("Decoded %s: %dx%d", path, frame.shape[1], frame.shape[0])
    return frame


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _to_pil(frame: np.ndarray, ext: str) -> Image.Image:
    if frame.ndim != 3 or frame.shape[2] not in (3, 4) or frame.dtype != np.uint8:
        raise UnsupportedFormat(
            f"Cannot encode array of shape {frame.shape} and dtype {frame.dtype}"
        )
    if ext in JPEG_EXTENSIONS:
        # JPEG is RGB only
        return Image.fromarray(np.ascontiguousarray(frame[:, :, :3]))
    return Image.fromarray(np.ascontiguousarray(frame))


def encode(frame: np.ndarray, path: str):
    """Write an RGBA (or RGB) uint8 array to ``path``.

    Raises:
        UnsupportedFormat: Output extension not allowed, or array not an image.
        IOFailure:         Destination not writable or the write failed.
    """
    ext = Path(path).suffix.lower()
    if ext not in ALLOWED_OUTPUT_EXTENSIONS:
        raise UnsupportedFormat(f"Cannot encode {path}: extension '{ext}' not allowed")
    errors = validate_output_path(path)
    if errors:
        raise IOFailure(f"Cannot write {path}: {'; '.join(errors)}")

    img = _to_pil(frame, ext)
    fmt = Image.registered_extensions().get(ext)
    target = Path(path).absolute()

    fd, tmp_path = tempfile.mkstemp(prefix=".pixelsort-", suffix=ext, dir=target.parent)
    os.close(fd)
    try:
        save_kwargs = {"quality": JPEG_QUALITY} if ext in JPEG_EXTENSIONS else {}
        img.save(tmp_path, format=fmt, **save_kwargs)
        # mkstemp creates 0600; give the image the mode a plain open() would
        os.chmod(tmp_path, 0o666 & ~_current_umask())
        os.replace(tmp_path, target)
    except (OSError, ValueError) as e:
        raise IOFailure(f"Cannot write {path}: {e}") from e
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)

    logger.debug("Encoded %s: %dx%d", path, frame.shape[1], frame.shape[0])
