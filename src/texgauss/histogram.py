"""
Histogram transformation between channel values and a Gaussian distribution.

For every decorrelated channel the samples are ranked with a stable sort, the
rank fraction ``p = (r + 0.5) / N`` of each sample is mapped through the inverse
normal CDF, and two quantized tables are recorded:

* the Forward LUT, sampled at the centres of ``N_lut`` equal buckets spanning the
  observed value range, holding the average Gaussian value of the samples that
  fall in each bucket;
* the Inverse LUT, sampled at ``N_lut`` equally spaced Gaussian values, holding
  the channel value found at that quantile of the sorted samples.

The Gaussian image is then produced by evaluating the Forward LUT for every
pixel (or, in ``"rank"`` mapping, by writing each pixel's own rank value).
"""

import logging

import numpy as np
from scipy.special import ndtr, ndtri

from .config import PrecomputeConfig
from .numba_utils import interp_uniform, lookup
from .sampling import as_image_buffer, assemble_channels, sample_channels
from .scheduler import WorkScheduler

logger = logging.getLogger(__name__)


def normal_cdf(x, mean: float = 0.0, std: float = 1.0):
    return ndtr((np.asarray(x, dtype=np.float64) - mean) / std)


def normal_ppf(u, mean: float = 0.0, std: float = 1.0):
    return mean + std * ndtri(np.asarray(u, dtype=np.float64))


class UniformLUT:
    """A 1-D table sampled at ``start + k * step``, evaluated by linear interpolation."""

    def __init__(self, table: np.ndarray, start: float, step: float):
        self.table = np.ascontiguousarray(table, dtype=np.float64)
        self.start = float(start)
        self.step = float(step)

    @property
    def resolution(self) -> int:
        return self.table.shape[0]

    @property
    def sample_points(self) -> np.ndarray:
        return self.start + self.step * np.arange(self.resolution)

    def __call__(self, values) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        return lookup(values.reshape(-1), self.start, self.step, self.table).reshape(
            values.shape
        )

    def lookup_into(self, values: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Evaluate into a preallocated contiguous float64 buffer."""
        return interp_uniform(values, self.start, self.step, self.table, out)

    def is_monotonic(self) -> bool:
        return bool(np.all(np.diff(self.table) >= 0))

    def __len__(self):
        return self.resolution


class ForwardLUT(UniformLUT):
    """Channel value -> Gaussian value, buckets spanning [domain_min, domain_max]."""

    def __init__(self, table: np.ndarray, domain_min: float, domain_max: float):
        resolution = len(table)
        width = (domain_max - domain_min) / resolution
        super().__init__(table, domain_min + 0.5 * width, width)
        self.domain_min = float(domain_min)
        self.domain_max = float(domain_max)

    @property
    def bucket_width(self) -> float:
        return self.step

    def to_dict(self) -> dict:
        return {"domain": [self.domain_min, self.domain_max]}


class InverseLUT(UniformLUT):
    """Gaussian value -> channel value, buckets spanning [domain_min, domain_max]."""

    def __init__(self, table: np.ndarray, domain_min: float, domain_max: float):
        resolution = len(table)
        width = (domain_max - domain_min) / resolution
        super().__init__(table, domain_min + 0.5 * width, width)
        self.domain_min = float(domain_min)
        self.domain_max = float(domain_max)

    @property
    def bucket_width(self) -> float:
        return self.step

    def to_dict(self) -> dict:
        return {"domain": [self.domain_min, self.domain_max]}


class ChannelTransform:
    """Forward and inverse tables for one channel plus its range statistics."""

    def __init__(
        self,
        channel: int,
        forward: ForwardLUT,
        inverse: InverseLUT,
        n_samples: int,
        value_min: float,
        value_max: float,
        rank_values: np.ndarray | None = None,
    ):
        self.channel = channel
        self.forward = forward
        self.inverse = inverse
        self.n_samples = n_samples
        self.value_min = value_min
        self.value_max = value_max
        self.rank_values = rank_values

    @property
    def is_degenerate(self) -> bool:
        return self.value_max <= self.value_min

    def release_samples(self):
        """Drop the per-pixel rank values once the Gaussian image is built."""
        self.rank_values = None

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "samples": self.n_samples,
            "value_range": [self.value_min, self.value_max],
            "forward": self.forward.to_dict(),
            "inverse": self.inverse.to_dict(),
        }

    def __repr__(self):
        return (
            f"ChannelTransform(channel={self.channel}, "
            f"range=({self.value_min:.4g}, {self.value_max:.4g}))"
        )


def parallel_stable_argsort(values: np.ndarray, workers: int = 1) -> np.ndarray:
    """
    Stable argsort, with the initial run sorting spread over ``workers`` threads.

    Contiguous chunks are sorted independently, then a final stable sort merges
    the sorted runs. Equal values keep their original scan order.
    """
    n = values.shape[0]
    if workers <= 1 or n < 2 * workers:
        return np.argsort(values, kind="stable")

    with WorkScheduler(workers) as scheduler:
        chunks = scheduler.map_ranges(
            lambda start, stop: start + np.argsort(values[start:stop], kind="stable"),
            n,
        )
    runs = np.concatenate(chunks)
    # Timsort detects the presorted runs; stability keeps chunk (scan) order on ties.
    return runs[np.argsort(values[runs], kind="stable")]


class HistogramTransformer:
    """Builds Forward/Inverse LUTs for each channel of a decorrelated image."""

    def __init__(
        self,
        config: PrecomputeConfig | None = None,
        scheduler: WorkScheduler | None = None,
    ):
        self.config = config or PrecomputeConfig(workers=1)
        self.scheduler = scheduler or WorkScheduler(self.config.workers)

    def transform(
        self, image: np.ndarray, keep_rank_values: bool = False
    ) -> list[ChannelTransform]:
        """
        Build per-channel transforms, one worker per channel.

        Args:
            image: Decorrelated image buffer (H, W, C)
            keep_rank_values: Also keep every pixel's exact rank Gaussian value

        Returns:
            List of ChannelTransform in channel order
        """
        samples = sample_channels(image)
        sort_workers = max(1, self.scheduler.workers // len(samples))
        return self.scheduler.map_items(
            lambda index, values: self.transform_channel(
                values, index, keep_rank_values, sort_workers
            ),
            samples,
        )

    def transform_channel(
        self,
        values: np.ndarray,
        channel: int = 0,
        keep_rank_values: bool = False,
        sort_workers: int = 1,
    ) -> ChannelTransform:
        """Rank one channel's samples and derive both lookup tables."""
        values = np.ascontiguousarray(values, dtype=np.float64).reshape(-1)
        n = values.shape[0]
        if n == 0:
            raise ValueError("Cannot build a histogram transform from zero samples")

        mean = self.config.gaussian_mean
        std = self.config.gaussian_std
        resolution = self.config.lut_resolution

        order = parallel_stable_argsort(values, sort_workers)
        sorted_values = values[order]
        gaussian_sorted = normal_ppf((np.arange(n) + 0.5) / n, mean, std)

        value_min = float(sorted_values[0])
        value_max = float(sorted_values[-1])
        degenerate = value_max <= value_min

        if degenerate:
            # A single distinct value sits at the median quantile.
            forward_table = np.full(resolution, mean)
        else:
            forward_table = self._forward_table(
                sorted_values, gaussian_sorted, value_min, value_max, resolution
            )
        forward = ForwardLUT(forward_table, value_min, value_max)

        inverse = self._inverse_lut(
            sorted_values, gaussian_sorted, degenerate, mean, std, resolution
        )

        rank_values = None
        if keep_rank_values:
            if degenerate:
                rank_values = np.full(n, mean)
            else:
                rank_values = np.empty(n)
                rank_values[order] = gaussian_sorted

        logger.debug(
            f"Channel {channel}: {n} samples in [{value_min:.6g}, {value_max:.6g}]"
            + (" (degenerate)" if degenerate else "")
        )
        return ChannelTransform(
            channel, forward, inverse, n, value_min, value_max, rank_values
        )

    @staticmethod
    def _forward_table(
        sorted_values: np.ndarray,
        gaussian_sorted: np.ndarray,
        value_min: float,
        value_max: float,
        resolution: int,
    ) -> np.ndarray:
        """Average Gaussian value per value bucket; empty buckets interpolated."""
        width = (value_max - value_min) / resolution
        buckets = np.floor((sorted_values - value_min) / width).astype(np.int64)
        np.clip(buckets, 0, resolution - 1, out=buckets)

        sums = np.bincount(buckets, weights=gaussian_sorted, minlength=resolution)
        counts = np.bincount(buckets, minlength=resolution)
        populated = np.flatnonzero(counts)
        means = sums[populated] / counts[populated]

        table = np.interp(np.arange(resolution), populated, means)
        # Bucket averages of a sorted sequence only decrease through rounding.
        return np.maximum.accumulate(table)

    def _inverse_lut(
        self,
        sorted_values: np.ndarray,
        gaussian_sorted: np.ndarray,
        degenerate: bool,
        mean: float,
        std: float,
        resolution: int,
    ) -> InverseLUT:
        """Channel value at evenly spaced Gaussian quantiles."""
        n = sorted_values.shape[0]
        sigma_range = self.config.inverse_sigma_range

        if sigma_range is not None:
            domain_min = mean - sigma_range * std
            domain_max = mean + sigma_range * std
        else:
            # First and last sample points land exactly on the extreme ranks.
            g_lo, g_hi = float(gaussian_sorted[0]), float(gaussian_sorted[-1])
            half = 0.5 * (g_hi - g_lo) / (resolution - 1)
            domain_min, domain_max = g_lo - half, g_hi + half

        if degenerate:
            return InverseLUT(np.full(resolution, sorted_values[0]), domain_min, domain_max)

        step = (domain_max - domain_min) / resolution
        points = domain_min + (np.arange(resolution) + 0.5) * step
        ranks = normal_cdf(points, mean, std) * n - 0.5
        np.clip(ranks, 0, n - 1, out=ranks)
        table = np.interp(ranks, np.arange(n), sorted_values)
        return InverseLUT(np.maximum.accumulate(table), domain_min, domain_max)


def build_gaussian_image(
    image: np.ndarray,
    transforms: list[ChannelTransform],
    scheduler: WorkScheduler | None = None,
    mapping: str = "lut",
) -> np.ndarray:
    """
    Map every pixel of the decorrelated image to its Gaussian value.

    Args:
        image: Decorrelated image buffer (H, W, C)
        transforms: One ChannelTransform per channel
        scheduler: Worker pool; pixel ranges are processed in parallel
        mapping: "lut" interpolates the Forward LUT, "rank" uses the exact
            per-pixel rank values kept by the transformer

    Returns:
        Gaussianized float64 image buffer of the same shape
    """
    buffer = as_image_buffer(image)
    height, width, channels = buffer.shape
    if len(transforms) != channels:
        raise ValueError(f"Expected {channels} channel transforms, got {len(transforms)}")

    if mapping == "rank":
        missing = [t.channel for t in transforms if t.rank_values is None]
        if missing:
            raise ValueError(f"Rank values were not kept for channels {missing}")
        return assemble_channels(
            [t.rank_values.astype(np.float64) for t in transforms], height, width
        )
    if mapping != "lut":
        raise ValueError(f"Unknown mapping '{mapping}'")

    return _apply_channel_luts(
        buffer, [t.forward for t in transforms], scheduler
    ).reshape(height, width, channels)


def apply_inverse_luts(
    image: np.ndarray,
    transforms: list[ChannelTransform],
    scheduler: WorkScheduler | None = None,
) -> np.ndarray:
    """Map a Gaussian image back to decorrelated channel values."""
    buffer = as_image_buffer(image)
    if len(transforms) != buffer.shape[2]:
        raise ValueError(
            f"Expected {buffer.shape[2]} channel transforms, got {len(transforms)}"
        )
    return _apply_channel_luts(
        buffer, [t.inverse for t in transforms], scheduler
    ).reshape(buffer.shape)


def _apply_channel_luts(
    buffer: np.ndarray, luts: list[UniformLUT], scheduler: WorkScheduler | None
) -> np.ndarray:
    scheduler = scheduler or WorkScheduler(1)
    samples = sample_channels(buffer)
    outputs = [np.empty_like(channel) for channel in samples]

    def _work(start: int, stop: int):
        for lut, channel, out in zip(luts, samples, outputs):
            lut.lookup_into(channel[start:stop], out[start:stop])

    scheduler.map_ranges(_work, samples[0].shape[0])
    return np.stack(outputs, axis=-1)
