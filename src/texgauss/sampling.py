"""
Image buffer validation and per-channel sampling.
"""

import logging

import numpy as np

from .errors import InputError, ResourceError
from .memory import check_allocation

logger = logging.getLogger(__name__)

MAX_CHANNELS = 4


def as_image_buffer(image: np.ndarray) -> np.ndarray:
    """
    Validate an image buffer and return it as a float64 ``(H, W, C)`` array.

    A 2-D array is treated as a single-channel image. The input is never
    modified; a new array is returned whenever a conversion is needed.
    """
    if not isinstance(image, np.ndarray):
        raise InputError("Image must be a numpy array")
    if image.ndim == 2:
        image = image[:, :, np.newaxis]
    if image.ndim != 3:
        raise InputError(
            f"Image must have shape (H, W) or (H, W, C), got {image.shape}"
        )

    height, width, channels = image.shape
    if height == 0 or width == 0:
        raise InputError(f"Image has zero pixels ({width}x{height})")
    if channels == 0:
        raise InputError("Image has zero channels")
    if channels > MAX_CHANNELS:
        raise InputError(
            f"Unsupported channel count {channels} (1 to {MAX_CHANNELS} supported)"
        )
    if not np.issubdtype(image.dtype, np.number) or np.issubdtype(
        image.dtype, np.complexfloating
    ):
        raise InputError(f"Unsupported pixel dtype {image.dtype}")

    buffer = image.astype(np.float64, copy=False)
    if not np.all(np.isfinite(buffer)):
        raise InputError("Image contains NaN or infinite values")
    return buffer


def sample_channels(image: np.ndarray) -> list[np.ndarray]:
    """
    Split an image into one flat sample sequence per channel.

    Args:
        image: Image buffer of shape (H, W, C) or (H, W)

    Returns:
        C contiguous float64 arrays of length H*W in row-major pixel order
    """
    buffer = as_image_buffer(image)
    height, width, channels = buffer.shape
    n_pixels = height * width
    nbytes = n_pixels * channels * np.dtype(np.float64).itemsize
    check_allocation(nbytes)

    try:
        samples = [
            np.ascontiguousarray(buffer[:, :, c]).reshape(n_pixels)
            for c in range(channels)
        ]
    except MemoryError as e:
        raise ResourceError(nbytes) from e

    logger.debug(f"Sampled {channels} channel(s) of {n_pixels} pixels")
    return samples


def assemble_channels(samples: list[np.ndarray], height: int, width: int) -> np.ndarray:
    """Inverse of :func:`sample_channels`: stack flat channels into (H, W, C)."""
    return np.stack(samples, axis=-1).reshape(height, width, len(samples))
