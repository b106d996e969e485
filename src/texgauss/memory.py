"""
Available-memory checks for the working buffers.
"""

import numpy as np
import psutil

from .errors import ResourceError

# float64 buffers alive at the same time during a run: input, samples,
# decorrelated image, sorted channel, Gaussian image, plus headroom.
PIPELINE_BUFFER_FACTOR = 6


def get_available_memory_bytes() -> int:
    return int(psutil.virtual_memory().available)


def check_allocation(nbytes: int):
    """Raise ResourceError when ``nbytes`` exceeds the memory currently available."""
    available = get_available_memory_bytes()
    if nbytes > available:
        raise ResourceError(nbytes, available)


def estimate_pipeline_bytes(width: int, height: int, channels: int) -> int:
    return width * height * channels * np.dtype(np.float64).itemsize * PIPELINE_BUFFER_FACTOR
