import numpy as np


class StreamingCovariance:
    """
    Computes mean and covariance matrix incrementally.

    Each worker accumulates its own instance over a pixel range; the partial
    results are combined afterwards with :meth:`merge`, so no accumulator is
    ever shared between threads.
    """

    def __init__(self, n_features: int = 3):
        self.n_features = n_features
        self.count = 0
        # Running mean and sum of centered outer products (co-moment).
        # Centered accumulation keeps a flat image at an exactly zero covariance.
        self.mean = np.zeros(n_features, dtype=np.float64)
        self.comoment = np.zeros((n_features, n_features), dtype=np.float64)

    def update(self, chunk: np.ndarray):
        """
        Update statistics with a new chunk of data.

        Args:
            chunk: Array of shape (N, n_features)
        """
        chunk_f64 = np.asarray(chunk, dtype=np.float64).reshape(-1, self.n_features)
        n = chunk_f64.shape[0]
        if n == 0:
            return

        chunk_mean = chunk_f64.mean(axis=0)
        centered = chunk_f64 - chunk_mean
        other = StreamingCovariance(self.n_features)
        other.count = n
        other.mean = chunk_mean
        other.comoment = centered.T @ centered
        self.merge(other)

    def merge(self, other: "StreamingCovariance") -> "StreamingCovariance":
        """Fold another partial accumulator into this one (Chan et al. update)."""
        if other.n_features != self.n_features:
            raise ValueError("Cannot merge accumulators with different feature counts")
        if other.count == 0:
            return self
        if self.count == 0:
            self.count = other.count
            self.mean = other.mean.copy()
            self.comoment = other.comoment.copy()
            return self

        total = self.count + other.count
        delta = other.mean - self.mean
        self.mean = self.mean + delta * (other.count / total)
        self.comoment = (
            self.comoment
            + other.comoment
            + np.outer(delta, delta) * (self.count * other.count / total)
        )
        self.count = total
        return self

    def finalize(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Calculate final Mean and Covariance Matrix.

        Returns:
            (mean, covariance)
        """
        if self.count <= 1:
            return self.mean.copy(), np.zeros_like(self.comoment)

        covariance = self.comoment / (self.count - 1)
        # Symmetrize away rounding asymmetry from the outer-product updates.
        covariance = 0.5 * (covariance + covariance.T)
        return self.mean.copy(), covariance


def calculate_partial_statistics(
    samples: list[np.ndarray], start: int, stop: int
) -> StreamingCovariance:
    """Accumulate statistics for pixels ``[start, stop)`` of the channel samples."""
    streamer = StreamingCovariance(n_features=len(samples))
    block = np.stack([channel[start:stop] for channel in samples], axis=1)
    streamer.update(block)
    return streamer


def reduce_statistics(partials: list[StreamingCovariance]) -> tuple[np.ndarray, np.ndarray]:
    """Combine per-worker partials in order and return (mean, covariance)."""
    if not partials:
        raise ValueError("No partial statistics to reduce")
    total = StreamingCovariance(n_features=partials[0].n_features)
    for partial in partials:
        total.merge(partial)
    return total.finalize()
