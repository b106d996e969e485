import numpy as np
import pytest

from texgauss import GaussianizationPipeline, InputError, PrecomputeConfig, gaussianize
from texgauss.decorrelation import FALLBACK_IDENTITY


class TestGaussianizationPipeline:
    def setup_method(self):
        rng = np.random.default_rng(99)
        base = rng.uniform(size=(96, 96))
        self.image = np.stack(
            [base, 0.6 * base + 0.4 * rng.uniform(size=(96, 96)), rng.beta(2, 2, (96, 96))],
            axis=-1,
        )
        self.pipeline = GaussianizationPipeline(PrecomputeConfig(workers=3))

    def test_process_produces_all_artifacts(self):
        result = self.pipeline.process(self.image)

        assert result.gaussian_image.shape == self.image.shape
        assert result.decorrelated_image.shape == self.image.shape
        assert result.transform.matrix.shape == (3, 3)
        assert len(result.channel_transforms) == 3
        assert result.inverse_lut_image().shape == (1, 256, 3)
        assert all(lut.shape == (256,) for lut in result.forward_luts)
        assert set(result.timings) == {
            "sampling",
            "decorrelation",
            "decorrelated_image",
            "histogram",
            "gaussian_image",
        }

    def test_input_is_not_modified(self):
        original = self.image.copy()
        self.pipeline.process(self.image)
        np.testing.assert_array_equal(self.image, original)

    def test_deterministic(self):
        first = self.pipeline.process(self.image)
        second = self.pipeline.process(self.image)

        assert np.array_equal(first.gaussian_image, second.gaussian_image)
        assert np.array_equal(first.transform.matrix, second.transform.matrix)
        for a, b in zip(first.inverse_luts, second.inverse_luts):
            assert np.array_equal(a, b)

    def test_reconstruct_approximates_input(self):
        result = self.pipeline.process(self.image)
        restored = result.reconstruct()

        error = np.abs(restored - self.image)
        assert np.mean(error) < 0.01
        assert np.max(error) < 0.1

    def test_rank_mapping_releases_samples(self):
        result = gaussianize(self.image, workers=2, mapping="rank")
        assert all(t.rank_values is None for t in result.channel_transforms)
        assert abs(result.gaussian_image.mean()) < 1e-3

    def test_without_decorrelation(self):
        result = gaussianize(self.image, workers=2, decorrelate=False)
        assert np.array_equal(result.transform.matrix, np.eye(3))
        assert np.array_equal(result.decorrelated_image, self.image)

    def test_unit_range_output(self):
        result = GaussianizationPipeline(PrecomputeConfig.unit_range(workers=2)).process(
            self.image
        )
        assert result.gaussian_image.mean() == pytest.approx(0.5, abs=0.01)
        assert result.gaussian_image.std() == pytest.approx(1 / 6, abs=0.01)

    def test_single_channel_identity(self):
        result = self.pipeline.process(self.image[:, :, 0])
        assert result.gaussian_image.shape == (96, 96, 1)
        assert np.array_equal(result.transform.matrix, np.eye(1))

    @pytest.mark.parametrize("channels", [2, 4])
    def test_other_channel_counts(self, channels):
        image = np.concatenate([self.image, self.image[:, :, :1] ** 2], axis=-1)[
            :, :, :channels
        ]
        result = self.pipeline.process(image)
        assert result.gaussian_image.shape == image.shape
        assert result.transform.is_orthogonal()

    def test_uniform_image(self):
        image = np.empty((10, 10, 3))
        image[:] = [0.5, 0.25, 0.75]
        result = self.pipeline.process(image)

        assert result.transform.fallback == FALLBACK_IDENTITY
        assert np.all(result.gaussian_image == 0.0)
        np.testing.assert_array_equal(result.reconstruct(), image)

    def test_invalid_input(self):
        with pytest.raises(InputError):
            self.pipeline.process(np.zeros((0, 5, 3)))
        with pytest.raises(InputError):
            self.pipeline.process(np.zeros((5, 5, 6)))

    def test_metadata(self):
        metadata = self.pipeline.process(self.image).metadata()

        assert metadata["channels"] == 3
        assert metadata["lut_resolution"] == 256
        assert len(metadata["decorrelation"]["matrix"]) == 3
        assert metadata["decorrelation"]["fallback"] == "none"
        assert len(metadata["channel_transforms"]) == 3
