"""
texgauss - Gaussianized textures and inverse LUTs for histogram-preserving
tiling and blending.

Precomputes, from an input texture, a decorrelated and Gaussianized image plus
the lookup tables and color transform a renderer needs to restore the
texture's original look after blending.
"""

__version__ = "0.1.0"

from .config import PrecomputeConfig as PrecomputeConfig
from .decorrelation import DecorrelationEstimator as DecorrelationEstimator
from .decorrelation import DecorrelationTransform as DecorrelationTransform
from .decorrelation import build_decorrelated_image as build_decorrelated_image
from .errors import InputError as InputError
from .errors import NumericalError as NumericalError
from .errors import ResourceError as ResourceError
from .errors import TexGaussError as TexGaussError
from .histogram import ChannelTransform as ChannelTransform
from .histogram import ForwardLUT as ForwardLUT
from .histogram import HistogramTransformer as HistogramTransformer
from .histogram import InverseLUT as InverseLUT
from .histogram import build_gaussian_image as build_gaussian_image
from .pipeline import GaussianizationPipeline as GaussianizationPipeline
from .pipeline import PipelineResult as PipelineResult
from .pipeline import gaussianize as gaussianize
from .sampling import sample_channels as sample_channels
from .scheduler import WorkScheduler as WorkScheduler

__all__ = [
    # Pipeline
    "GaussianizationPipeline",
    "PipelineResult",
    "PrecomputeConfig",
    "gaussianize",
    # Stages
    "sample_channels",
    "DecorrelationEstimator",
    "DecorrelationTransform",
    "build_decorrelated_image",
    "HistogramTransformer",
    "ChannelTransform",
    "ForwardLUT",
    "InverseLUT",
    "build_gaussian_image",
    "WorkScheduler",
    # Errors
    "TexGaussError",
    "InputError",
    "NumericalError",
    "ResourceError",
]
