"""
Run configuration for the precompute pipeline.
"""

import math
import os
from dataclasses import dataclass, field

MAPPING_MODES = ("lut", "rank")

# Target distribution used by the original tiling-and-blending renderer:
# mean 0.5 and std 1/6 keep +-3 sigma inside [0, 1].
UNIT_RANGE_MEAN = 0.5
UNIT_RANGE_STD = 1.0 / 6.0


def _default_workers() -> int:
    return max(1, os.cpu_count() or 1)


@dataclass
class PrecomputeConfig:
    """Parameters consumed by the core transform."""

    lut_resolution: int = 256
    workers: int = field(default_factory=_default_workers)
    decorrelate: bool = True
    mapping: str = "lut"
    gaussian_mean: float = 0.0
    gaussian_std: float = 1.0
    inverse_sigma_range: float | None = None

    def __post_init__(self):
        if int(self.lut_resolution) != self.lut_resolution or self.lut_resolution < 2:
            raise ValueError(
                f"LUT resolution must be an integer >= 2, got {self.lut_resolution}"
            )
        self.lut_resolution = int(self.lut_resolution)
        if int(self.workers) != self.workers or self.workers < 1:
            raise ValueError(f"Worker count must be >= 1, got {self.workers}")
        self.workers = int(self.workers)
        if self.mapping not in MAPPING_MODES:
            raise ValueError(
                f"Unknown mapping '{self.mapping}'. Available: {list(MAPPING_MODES)}"
            )
        if not math.isfinite(self.gaussian_mean):
            raise ValueError("Gaussian mean must be finite")
        if not (math.isfinite(self.gaussian_std) and self.gaussian_std > 0):
            raise ValueError("Gaussian std must be a positive finite number")
        if self.inverse_sigma_range is not None and not (
            math.isfinite(self.inverse_sigma_range) and self.inverse_sigma_range > 0
        ):
            raise ValueError("Inverse LUT sigma range must be positive")

    @classmethod
    def unit_range(cls, **kwargs) -> "PrecomputeConfig":
        """Configuration matching the [0, 1] Gaussian of the original renderer."""
        kwargs.setdefault("gaussian_mean", UNIT_RANGE_MEAN)
        kwargs.setdefault("gaussian_std", UNIT_RANGE_STD)
        kwargs.setdefault("inverse_sigma_range", 3.0)
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return {
            "lut_resolution": self.lut_resolution,
            "workers": self.workers,
            "decorrelate": self.decorrelate,
            "mapping": self.mapping,
            "gaussian_mean": self.gaussian_mean,
            "gaussian_std": self.gaussian_std,
            "inverse_sigma_range": self.inverse_sigma_range,
        }
