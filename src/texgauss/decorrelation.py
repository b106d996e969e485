"""
Channel decorrelation: estimator and decorrelated image builder.

The decorrelation transform is the orthogonal matrix whose columns are the
eigenvectors of the channel covariance matrix, in descending eigenvalue order.
A pixel row vector ``x`` is decorrelated as ``x @ matrix`` and restored as
``y @ inverse`` where ``inverse`` is the transpose of ``matrix``.
"""

import logging

import numpy as np

from .errors import NumericalError
from .sampling import as_image_buffer
from .scheduler import WorkScheduler
from .streaming import calculate_partial_statistics, reduce_statistics

logger = logging.getLogger(__name__)

# Eigenvalues at or below max(ABS, REL * largest) are treated as zero.
EIGENVALUE_ABS_TOLERANCE = 1e-12
EIGENVALUE_REL_TOLERANCE = 1e-9
ORTHOGONALITY_TOLERANCE = 1e-8

FALLBACK_NONE = "none"
FALLBACK_PARTIAL = "partial"
FALLBACK_IDENTITY = "identity"


class DecorrelationTransform:
    """Orthogonal channel rotation plus the statistics it was derived from."""

    def __init__(
        self,
        matrix: np.ndarray,
        eigenvalues: np.ndarray,
        mean: np.ndarray,
        covariance: np.ndarray,
        fallback: str = FALLBACK_NONE,
    ):
        self.matrix = np.asarray(matrix, dtype=np.float64)
        self.inverse = self.matrix.T.copy()
        self.eigenvalues = np.asarray(eigenvalues, dtype=np.float64)
        self.mean = np.asarray(mean, dtype=np.float64)
        self.covariance = np.asarray(covariance, dtype=np.float64)
        self.fallback = fallback

    @classmethod
    def identity(
        cls,
        n_channels: int,
        mean: np.ndarray | None = None,
        covariance: np.ndarray | None = None,
        fallback: str = FALLBACK_NONE,
    ) -> "DecorrelationTransform":
        if mean is None:
            mean = np.zeros(n_channels)
        if covariance is None:
            covariance = np.zeros((n_channels, n_channels))
        return cls(
            np.eye(n_channels),
            np.diag(covariance).copy(),
            mean,
            covariance,
            fallback=fallback,
        )

    @property
    def n_channels(self) -> int:
        return self.matrix.shape[0]

    def apply(self, pixels: np.ndarray) -> np.ndarray:
        """Decorrelate pixel rows of shape (N, C)."""
        return pixels @ self.matrix

    def invert(self, pixels: np.ndarray) -> np.ndarray:
        """Restore pixel rows of shape (N, C) from decorrelated values."""
        return pixels @ self.inverse

    def orthogonality_error(self) -> float:
        eye = np.eye(self.n_channels)
        return float(np.max(np.abs(self.matrix.T @ self.matrix - eye)))

    def is_orthogonal(self, tolerance: float = ORTHOGONALITY_TOLERANCE) -> bool:
        return self.orthogonality_error() <= tolerance

    def to_dict(self) -> dict:
        return {
            "matrix": self.matrix.tolist(),
            "inverse": self.inverse.tolist(),
            "eigenvalues": self.eigenvalues.tolist(),
            "mean": self.mean.tolist(),
            "fallback": self.fallback,
        }

    def __repr__(self):
        return (
            f"DecorrelationTransform(channels={self.n_channels}, "
            f"fallback={self.fallback!r})"
        )


def gram_schmidt(vectors: np.ndarray, candidates: np.ndarray | None = None) -> np.ndarray:
    """
    Orthonormalize the columns of ``vectors`` (modified Gram-Schmidt).

    Columns that collapse to zero are replaced by the next candidate column
    (standard basis axes by default) that is independent of those kept so far.
    Returns a square orthogonal matrix.
    """
    vectors = np.asarray(vectors, dtype=np.float64)
    size = vectors.shape[0]
    if candidates is None:
        candidates = np.eye(size)

    basis: list[np.ndarray] = []

    def _orthonormalize(v: np.ndarray) -> np.ndarray | None:
        v = v.astype(np.float64, copy=True)
        for b in basis:
            v -= np.dot(b, v) * b
        # Second pass restores orthogonality lost to rounding.
        for b in basis:
            v -= np.dot(b, v) * b
        norm = np.linalg.norm(v)
        if norm <= 1e-10:
            return None
        return v / norm

    for k in range(vectors.shape[1]):
        v = _orthonormalize(vectors[:, k])
        if v is not None:
            basis.append(v)

    for k in range(candidates.shape[1]):
        if len(basis) == size:
            break
        v = _orthonormalize(candidates[:, k])
        if v is not None:
            basis.append(v)

    return np.stack(basis[:size], axis=1)


class DecorrelationEstimator:
    """Derives the decorrelation transform from per-channel samples."""

    def __init__(self, scheduler: WorkScheduler | None = None):
        self.scheduler = scheduler or WorkScheduler(1)

    def estimate(self, samples: list[np.ndarray]) -> DecorrelationTransform:
        """
        Compute channel statistics and the decorrelating rotation.

        Args:
            samples: One flat float array per channel, all the same length

        Returns:
            DecorrelationTransform (identity for single-channel input)
        """
        n_channels = len(samples)
        if n_channels == 1:
            return DecorrelationTransform.identity(1, mean=[float(np.mean(samples[0]))])

        mean, covariance = self._calculate_statistics(samples)

        try:
            eigenvalues, eigenvectors = self._eigendecomposition(covariance)
        except NumericalError as e:
            logger.warning(f"{e}; using identity decorrelation")
            return DecorrelationTransform.identity(
                n_channels, mean, covariance, fallback=FALLBACK_IDENTITY
            )

        tolerance = max(
            EIGENVALUE_ABS_TOLERANCE, EIGENVALUE_REL_TOLERANCE * max(eigenvalues[0], 0.0)
        )
        rank = int(np.sum(eigenvalues > tolerance))
        fallback = FALLBACK_NONE

        if rank == 0:
            logger.warning(
                "Covariance matrix has no eigenvalue above "
                f"{tolerance:.3g} (flat image); using identity decorrelation"
            )
            return DecorrelationTransform.identity(
                n_channels, mean, covariance, fallback=FALLBACK_IDENTITY
            )
        if rank < n_channels:
            logger.warning(
                f"Covariance matrix is rank deficient ({rank} of {n_channels}); "
                "completing the null space with identity axes"
            )
            eigenvectors = gram_schmidt(eigenvectors[:, :rank])
            eigenvectors = _canonical_signs(eigenvectors)
            eigenvalues = np.where(eigenvalues > tolerance, eigenvalues, 0.0)
            fallback = FALLBACK_PARTIAL

        transform = DecorrelationTransform(
            eigenvectors, eigenvalues, mean, covariance, fallback=fallback
        )
        if not transform.is_orthogonal():
            logger.warning(
                "Eigenvectors deviate from orthogonality by "
                f"{transform.orthogonality_error():.3g}; re-orthogonalizing"
            )
            transform = DecorrelationTransform(
                gram_schmidt(eigenvectors), eigenvalues, mean, covariance, fallback
            )

        logger.debug(f"Decorrelation eigenvalues: {eigenvalues.tolist()}")
        return transform

    def _calculate_statistics(
        self, samples: list[np.ndarray]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Mean and covariance from per-worker partial sums."""
        n_pixels = samples[0].shape[0]
        partials = self.scheduler.map_ranges(
            lambda start, stop: calculate_partial_statistics(samples, start, stop),
            n_pixels,
        )
        return reduce_statistics(partials)

    def _eigendecomposition(
        self, covariance_matrix: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Symmetric eigendecomposition sorted by descending eigenvalue."""
        if not np.all(np.isfinite(covariance_matrix)):
            raise NumericalError("Covariance matrix contains non-finite values")
        try:
            eigenvalues, eigenvectors = np.linalg.eigh(covariance_matrix)
        except np.linalg.LinAlgError as e:
            raise NumericalError(f"Eigendecomposition did not converge: {e}") from e

        # Stable sort keeps equal eigenvalues in channel order.
        idx = np.argsort(-eigenvalues, kind="stable")
        eigenvalues = eigenvalues[idx]
        eigenvectors = eigenvectors[:, idx]
        return eigenvalues, _canonical_signs(eigenvectors)


def _canonical_signs(eigenvectors: np.ndarray) -> np.ndarray:
    """Flip each column so its largest-magnitude component is positive."""
    pivots = np.argmax(np.abs(eigenvectors), axis=0)
    signs = np.sign(eigenvectors[pivots, np.arange(eigenvectors.shape[1])])
    signs[signs == 0] = 1.0
    return eigenvectors * signs


def build_decorrelated_image(
    image: np.ndarray,
    transform: DecorrelationTransform,
    scheduler: WorkScheduler | None = None,
) -> np.ndarray:
    """
    Apply the decorrelation transform to every pixel.

    Args:
        image: Image buffer of shape (H, W, C)
        transform: Transform with a C x C matrix
        scheduler: Worker pool; pixel ranges are processed in parallel

    Returns:
        New float64 image buffer of the same shape
    """
    buffer = as_image_buffer(image)
    height, width, channels = buffer.shape
    if channels != transform.n_channels:
        raise ValueError(
            f"Transform expects {transform.n_channels} channels, image has {channels}"
        )
    return _map_pixels(buffer, transform.apply, scheduler).reshape(height, width, channels)


def restore_correlated_image(
    image: np.ndarray,
    transform: DecorrelationTransform,
    scheduler: WorkScheduler | None = None,
) -> np.ndarray:
    """Apply the inverse transform; the counterpart of :func:`build_decorrelated_image`."""
    buffer = as_image_buffer(image)
    return _map_pixels(buffer, transform.invert, scheduler).reshape(buffer.shape)


def _map_pixels(buffer: np.ndarray, func, scheduler: WorkScheduler | None) -> np.ndarray:
    scheduler = scheduler or WorkScheduler(1)
    flat = buffer.reshape(-1, buffer.shape[2])
    output = np.empty_like(flat)

    def _work(start: int, stop: int):
        # Workers write disjoint row ranges of the output.
        output[start:stop] = func(flat[start:stop])

    scheduler.map_ranges(_work, flat.shape[0])
    return output
