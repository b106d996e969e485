import numpy as np
import pytest


def make_correlated_image(rng, height=64, width=64, channels=3):
    """Smooth, strongly correlated channels in [0, 1]."""
    base = rng.uniform(0.0, 1.0, (height, width))
    layers = [base]
    for c in range(1, channels):
        noise = rng.uniform(0.0, 1.0, (height, width))
        layers.append(0.7 * base + 0.3 * noise * (c / channels))
    return np.clip(np.stack(layers, axis=-1), 0.0, 1.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def rgb_image(rng):
    return make_correlated_image(rng)


@pytest.fixture
def correlated_image():
    return make_correlated_image
