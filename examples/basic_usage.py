"""
Basic usage examples for texgauss.

Demonstrates the main functionality and typical workflows.
"""

import numpy as np

from texgauss import GaussianizationPipeline, PrecomputeConfig, gaussianize
from texgauss.io_utils import write_artifacts


def create_test_image(size: int = 128) -> np.ndarray:
    """Create a synthetic, color-correlated texture in [0, 1]."""
    rng = np.random.default_rng(0)
    y, x = np.mgrid[0:size, 0:size] / size
    luminance = 0.5 + 0.25 * np.sin(12 * x) * np.cos(9 * y) + 0.1 * rng.normal(size=(size, size))
    image = np.stack(
        [luminance, 0.8 * luminance + 0.1, 0.5 * luminance + 0.2 * rng.uniform(size=(size, size))],
        axis=-1,
    )
    return np.clip(image, 0.0, 1.0)


def example_basic_processing():
    """Basic Gaussianization example."""
    print("=== Basic Gaussianization ===")

    test_image = create_test_image()
    result = gaussianize(test_image)

    print(f"Gaussian image shape: {result.gaussian_image.shape}")
    print(f"Gaussian mean / std: {result.gaussian_image.mean():.4f} / {result.gaussian_image.std():.4f}")
    print(f"Decorrelation matrix:\n{np.round(result.transform.matrix, 4)}")
    print(f"Decorrelation fallback: {result.transform.fallback}")

    restored = result.reconstruct()
    print(f"Mean reconstruction error: {np.mean(np.abs(restored - test_image)):.5f}")

    return result


def example_renderer_outputs():
    """Write the artifacts in the [0, 1] layout used by the renderer."""
    print("\n=== Renderer Outputs ===")

    config = PrecomputeConfig.unit_range(lut_resolution=128)
    result = GaussianizationPipeline(config).process(create_test_image())

    paths = write_artifacts(result, "example_output", "example-gaussian", "example-lut")
    for kind, path in paths.items():
        print(f"Saved {kind}: {path}")

    return paths


if __name__ == "__main__":
    example_basic_processing()
    example_renderer_outputs()
