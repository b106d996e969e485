"""
Gaussianization pipeline.

Pipeline Order:
1. Channel sampling (validates the image buffer)
2. Decorrelation estimate (covariance + eigenvectors)
3. Decorrelated image
4. Histogram transform (per channel LUTs)
5. Gaussian image

The stages run strictly in sequence. A stage either hands a complete artifact
to the next one or raises, aborting the run.
"""

import logging
import time
from typing import Any

import numpy as np

from .config import PrecomputeConfig
from .decorrelation import (
    DecorrelationEstimator,
    DecorrelationTransform,
    build_decorrelated_image,
    restore_correlated_image,
)
from .histogram import (
    ChannelTransform,
    HistogramTransformer,
    apply_inverse_luts,
    build_gaussian_image,
)
from .sampling import as_image_buffer, sample_channels
from .scheduler import WorkScheduler

logger = logging.getLogger(__name__)


class PipelineResult:
    """
    Output artifacts of one run.
    Contains the Gaussian image, the per-channel transforms and the decorrelation.
    """

    def __init__(
        self,
        gaussian_image: np.ndarray,
        decorrelated_image: np.ndarray,
        transform: DecorrelationTransform,
        channel_transforms: list[ChannelTransform],
        config: PrecomputeConfig,
        timings: dict[str, float] | None = None,
    ):
        self.gaussian_image = gaussian_image
        self.decorrelated_image = decorrelated_image
        self.transform = transform
        self.channel_transforms = channel_transforms
        self.config = config
        self.timings = timings or {}

    @property
    def shape(self) -> tuple[int, ...]:
        return self.gaussian_image.shape

    @property
    def n_channels(self) -> int:
        return self.gaussian_image.shape[2]

    @property
    def forward_luts(self) -> list[np.ndarray]:
        return [t.forward.table for t in self.channel_transforms]

    @property
    def inverse_luts(self) -> list[np.ndarray]:
        return [t.inverse.table for t in self.channel_transforms]

    def inverse_lut_image(self) -> np.ndarray:
        """Inverse LUTs as a 1 x N image, one channel per LUT."""
        return np.stack(self.inverse_luts, axis=-1)[np.newaxis, :, :]

    def reconstruct(self, gaussian_image: np.ndarray | None = None) -> np.ndarray:
        """
        Undo the transform: Inverse LUTs, then the inverse decorrelation.

        Args:
            gaussian_image: Gaussian samples to map back (default: this run's image)

        Returns:
            Image buffer in the input's channel space
        """
        if gaussian_image is None:
            gaussian_image = self.gaussian_image
        scheduler = WorkScheduler(self.config.workers)
        decorrelated = apply_inverse_luts(gaussian_image, self.channel_transforms, scheduler)
        return restore_correlated_image(decorrelated, self.transform, scheduler)

    def metadata(self) -> dict[str, Any]:
        """Summary written next to the LUT image for the renderer."""
        height, width, channels = self.gaussian_image.shape
        return {
            "width": width,
            "height": height,
            "channels": channels,
            "lut_resolution": self.config.lut_resolution,
            "gaussian": {
                "mean": self.config.gaussian_mean,
                "std": self.config.gaussian_std,
            },
            "mapping": self.config.mapping,
            "decorrelation": self.transform.to_dict(),
            "channel_transforms": [t.to_dict() for t in self.channel_transforms],
        }

    def __repr__(self):
        return f"PipelineResult(shape={self.shape}, fallback={self.transform.fallback!r})"


class GaussianizationPipeline:
    """Runs the full precompute on an image buffer."""

    def __init__(self, config: PrecomputeConfig | None = None):
        self.config = config or PrecomputeConfig()

    def process(self, image: np.ndarray) -> PipelineResult:
        """
        Gaussianize an image buffer.

        Args:
            image: Float image buffer (H, W, C) or (H, W), C in 1..4

        Returns:
            PipelineResult with all output artifacts
        """
        config = self.config
        buffer = as_image_buffer(image)
        height, width, channels = buffer.shape
        logger.info(
            f"Gaussianizing {width}x{height} image with {channels} channel(s) "
            f"on {config.workers} worker(s)"
        )
        timings = {}

        with WorkScheduler(config.workers) as scheduler:
            start = time.perf_counter()
            samples = sample_channels(buffer)
            timings["sampling"] = time.perf_counter() - start

            start = time.perf_counter()
            if config.decorrelate:
                transform = DecorrelationEstimator(scheduler).estimate(samples)
            else:
                transform = DecorrelationTransform.identity(
                    channels, mean=[float(np.mean(s)) for s in samples]
                )
            del samples
            timings["decorrelation"] = time.perf_counter() - start

            start = time.perf_counter()
            decorrelated = build_decorrelated_image(buffer, transform, scheduler)
            timings["decorrelated_image"] = time.perf_counter() - start

            start = time.perf_counter()
            transformer = HistogramTransformer(config, scheduler)
            channel_transforms = transformer.transform(
                decorrelated, keep_rank_values=config.mapping == "rank"
            )
            timings["histogram"] = time.perf_counter() - start

            start = time.perf_counter()
            gaussian = build_gaussian_image(
                decorrelated, channel_transforms, scheduler, config.mapping
            )
            for channel_transform in channel_transforms:
                channel_transform.release_samples()
            timings["gaussian_image"] = time.perf_counter() - start

        for stage, seconds in timings.items():
            logger.debug(f"Stage {stage}: {seconds:.3f}s")

        return PipelineResult(
            gaussian_image=gaussian,
            decorrelated_image=decorrelated,
            transform=transform,
            channel_transforms=channel_transforms,
            config=config,
            timings=timings,
        )


def gaussianize(image: np.ndarray, **kwargs) -> PipelineResult:
    """
    Simple function to run the pipeline with keyword configuration.

    Args:
        image: Input image buffer
        **kwargs: PrecomputeConfig fields

    Returns:
        PipelineResult
    """
    return GaussianizationPipeline(PrecomputeConfig(**kwargs)).process(image)
