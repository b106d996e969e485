"""
Exception hierarchy for the Gaussianization precompute.

Input errors are raised before any computation starts. Numerical errors are
recovered locally by the decorrelation stage and never reach the caller.
Resource errors are fatal and carry the allocation size that failed.
"""


class TexGaussError(Exception):
    """Base class for all texgauss errors."""


class InputError(TexGaussError, ValueError):
    """The image buffer handed to the core is unusable."""


class NumericalError(TexGaussError, ArithmeticError):
    """Eigendecomposition failed or the covariance matrix is degenerate."""


class ResourceError(TexGaussError, MemoryError):
    """Not enough memory to allocate the working buffers."""

    def __init__(self, requested_bytes: int, available_bytes: int | None = None):
        self.requested_bytes = int(requested_bytes)
        self.available_bytes = available_bytes
        message = f"Cannot allocate {self.requested_bytes} bytes for channel buffers"
        if available_bytes is not None:
            message += f" ({int(available_bytes)} bytes available)"
        super().__init__(message)
