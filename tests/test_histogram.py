"""
Tests for the histogram transformer and the Gaussian image builder.
"""

import numpy as np
import pytest

from texgauss.config import PrecomputeConfig
from texgauss.histogram import (
    ForwardLUT,
    HistogramTransformer,
    InverseLUT,
    apply_inverse_luts,
    build_gaussian_image,
    normal_cdf,
    normal_ppf,
    parallel_stable_argsort,
)
from texgauss.scheduler import WorkScheduler


class TestNormalDistribution:
    def test_ppf_inverts_cdf(self):
        x = np.linspace(-4, 4, 33)
        np.testing.assert_allclose(normal_ppf(normal_cdf(x)), x, atol=1e-9)

    def test_shifted_distribution(self):
        assert normal_ppf(0.5, mean=0.5, std=1 / 6) == pytest.approx(0.5)
        assert normal_cdf(1.0, mean=0.5, std=1 / 6) == pytest.approx(0.99865, abs=1e-5)


class TestParallelStableArgsort:
    def test_matches_numpy_stable_sort(self, rng):
        values = rng.integers(0, 20, 5000).astype(np.float64)
        expected = np.argsort(values, kind="stable")
        for workers in (1, 2, 3, 7):
            np.testing.assert_array_equal(parallel_stable_argsort(values, workers), expected)


class TestHistogramTransformer:
    """Test cases for per-channel LUT construction."""

    def setup_method(self):
        self.transformer = HistogramTransformer(PrecomputeConfig(workers=2))

    def test_two_by_two_scenario_rank_values(self):
        image = np.array([[0.0, 0.5], [0.5, 1.0]])
        (transform,) = self.transformer.transform(image, keep_rank_values=True)

        np.testing.assert_allclose(
            transform.rank_values, [-1.1503, -0.3186, 0.3186, 1.1503], atol=1e-4
        )

    def test_two_by_two_scenario_forward_lut(self):
        image = np.array([[0.0, 0.5], [0.5, 1.0]])
        (transform,) = self.transformer.transform(image)
        table = transform.forward.table

        assert table[0] == pytest.approx(-1.1503, abs=1e-4)
        # Both 0.5 samples share a bucket and average to the median.
        assert table[128] == pytest.approx(0.0, abs=1e-12)
        assert table[-1] == pytest.approx(1.1503, abs=1e-4)
        assert transform.forward(np.array([0.0, 1.0])) == pytest.approx([-1.1503, 1.1503], abs=1e-4)

    def test_uniform_channel_maps_to_median(self):
        image = np.full((6, 6), 0.4)
        (transform,) = self.transformer.transform(image, keep_rank_values=True)

        assert transform.is_degenerate
        assert np.all(transform.forward.table == 0.0)
        assert np.all(transform.rank_values == 0.0)
        assert np.all(transform.inverse.table == 0.4)
        assert transform.forward(np.array([0.4]))[0] == 0.0

    def test_luts_are_monotonic(self, rng):
        image = np.stack(
            [
                rng.beta(2.0, 5.0, (64, 64)),
                rng.integers(0, 8, (64, 64)) / 7.0,
                rng.normal(size=(64, 64)) ** 3,
            ],
            axis=-1,
        )
        for transform in self.transformer.transform(image):
            assert transform.forward.is_monotonic()
            assert transform.inverse.is_monotonic()
            assert len(transform.forward) == 256
            assert len(transform.inverse) == 256

    def test_forward_then_inverse_is_identity_within_a_bucket(self, rng):
        values = rng.uniform(0.0, 1.0, 256 * 256)
        (transform,) = self.transformer.transform(values.reshape(256, 256))

        width = transform.forward.bucket_width
        grid = np.linspace(transform.value_min + width, transform.value_max - width, 500)
        round_trip = transform.inverse(transform.forward(grid))
        assert np.max(np.abs(round_trip - grid)) <= width

    @pytest.mark.parametrize(
        "distribution",
        [
            lambda rng, n: rng.beta(2.0, 5.0, n),
            lambda rng, n: rng.exponential(1.0, n),
            lambda rng, n: rng.lognormal(0.0, 1.0, n),
            lambda rng, n: np.concatenate(
                [rng.normal(-1.0, 0.6, n // 2), rng.normal(1.0, 0.6, n - n // 2)]
            ),
        ],
        ids=["skewed", "exponential", "heavy-tailed", "bimodal"],
    )
    def test_forward_then_inverse_on_interior_samples(self, rng, distribution):
        values = distribution(rng, 256 * 256)
        (transform,) = self.transformer.transform(values.reshape(256, 256))

        # Sparse tails fall between Inverse LUT entries, so only the bulk is held
        # to the one-bucket bound.
        low, high = np.quantile(values, [0.1, 0.9])
        interior = values[(values >= low) & (values <= high)]
        round_trip = transform.inverse(transform.forward(interior))
        assert np.max(np.abs(round_trip - interior)) <= transform.forward.bucket_width

    def test_inverse_lut_spans_exact_rank_range(self, rng):
        values = rng.uniform(0.0, 1.0, 1000)
        (transform,) = self.transformer.transform(values.reshape(10, 100))
        inverse = transform.inverse

        assert inverse.table[0] == pytest.approx(values.min())
        assert inverse.table[-1] == pytest.approx(values.max())
        assert inverse.sample_points[0] == pytest.approx(normal_ppf(0.5 / 1000))
        assert inverse.sample_points[-1] == pytest.approx(normal_ppf(999.5 / 1000))

    def test_inverse_lut_sigma_range(self, rng):
        transformer = HistogramTransformer(PrecomputeConfig.unit_range(workers=1))
        (transform,) = transformer.transform(rng.uniform(size=(32, 32)))

        assert transform.inverse.domain_min == pytest.approx(0.0)
        assert transform.inverse.domain_max == pytest.approx(1.0)
        assert transform.inverse.sample_points[0] == pytest.approx(0.5 / 256)

    def test_custom_resolution(self, rng):
        transformer = HistogramTransformer(PrecomputeConfig(lut_resolution=16, workers=1))
        (transform,) = transformer.transform(rng.uniform(size=(8, 8)))
        assert transform.forward.table.shape == (16,)
        assert transform.inverse.table.shape == (16,)

    def test_channels_are_independent(self, rng):
        a = rng.uniform(size=(16, 16))
        b = rng.exponential(size=(16, 16))
        together = self.transformer.transform(np.stack([a, b], axis=-1))
        alone = self.transformer.transform(b)

        np.testing.assert_array_equal(together[1].forward.table, alone[0].forward.table)
        np.testing.assert_array_equal(together[1].inverse.table, alone[0].inverse.table)


class TestGaussianImageBuilder:
    """Test cases for mapping pixels to the Gaussian distribution."""

    def setup_method(self):
        self.scheduler = WorkScheduler(3)
        self.transformer = HistogramTransformer(PrecomputeConfig(workers=3), self.scheduler)

    @pytest.mark.parametrize("mapping", ["lut", "rank"])
    def test_output_is_standard_gaussian(self, rng, mapping):
        n = 256 * 256
        image = np.stack(
            [rng.beta(2.0, 5.0, (256, 256)), rng.uniform(size=(256, 256))], axis=-1
        )
        transforms = self.transformer.transform(image, keep_rank_values=mapping == "rank")
        gaussian = build_gaussian_image(image, transforms, self.scheduler, mapping)

        assert gaussian.shape == image.shape
        for c in range(2):
            channel = gaussian[:, :, c].reshape(-1)
            assert abs(channel.mean()) < 8 / np.sqrt(n)
            assert abs(channel.var() - 1.0) < 8 / np.sqrt(n)

    def test_lut_mapping_matches_forward_lut(self, rng):
        image = rng.uniform(size=(20, 20, 2))
        transforms = self.transformer.transform(image)
        gaussian = build_gaussian_image(image, transforms, self.scheduler)

        for c, transform in enumerate(transforms):
            expected = np.interp(
                image[:, :, c], transform.forward.sample_points, transform.forward.table
            )
            np.testing.assert_allclose(gaussian[:, :, c], expected, atol=1e-12)

    def test_rank_mapping_requires_rank_values(self, rng):
        image = rng.uniform(size=(4, 4))
        transforms = self.transformer.transform(image)
        with pytest.raises(ValueError):
            build_gaussian_image(image, transforms, mapping="rank")

    def test_deterministic(self, rng):
        image = rng.uniform(size=(64, 64, 3))
        first = build_gaussian_image(image, self.transformer.transform(image), self.scheduler)
        second = build_gaussian_image(image, self.transformer.transform(image), self.scheduler)
        assert np.array_equal(first, second)

    def test_inverse_luts_restore_channel_values(self, rng):
        image = rng.uniform(size=(128, 128, 1))
        transforms = self.transformer.transform(image)
        gaussian = build_gaussian_image(image, transforms, self.scheduler)
        restored = apply_inverse_luts(gaussian, transforms, self.scheduler)

        assert np.mean(np.abs(restored - image)) < transforms[0].forward.bucket_width


class TestUniformLUT:
    def test_clamps_outside_domain(self):
        lut = ForwardLUT(np.array([0.0, 1.0, 2.0, 3.0]), 0.0, 4.0)
        np.testing.assert_allclose(lut(np.array([-5.0, 0.5, 2.0, 3.5, 9.0])), [0, 0, 1.5, 3, 3])

    def test_zero_width_domain_returns_first_entry(self):
        lut = InverseLUT(np.full(4, 7.0), 1.0, 1.0)
        assert lut(np.array([0.0, 1.0, 2.0])).tolist() == [7.0, 7.0, 7.0]
