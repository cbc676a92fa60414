"""Unit tests for the logo model: PCA, k-means, seeds and distance threshold."""

import numpy as np
import pytest

from ads_detector.data_models import Sample
from ads_detector.exceptions import InsufficientSamplesError, ModelTrainingError
from ads_detector.training import project_histograms, train_logo_model

from conftest import AD_WINDOWS, make_config


def _in_ad(t: float) -> bool:
    return any(a <= t < b for a, b in AD_WINDOWS)


class TestTrainLogoModel:
    def test_logo_cluster_is_the_largest(self, training_output):
        labels = training_output.kmeans_labels
        logo = training_output.logo_cluster_label
        assert labels.count(logo) == 108

    def test_seeds_are_logo_frames(self, training_output):
        times = training_output.sample_times
        seeds = training_output.model.seed_sample_indices
        assert seeds
        assert not any(_in_ad(times[i]) for i in seeds)

    def test_threshold_between_clusters(self, training_output):
        threshold = training_output.model.distance_threshold
        assert 0.05 <= threshold <= 0.95
        assert threshold == pytest.approx(0.5, abs=0.05)

    def test_shapes(self, training_output):
        assert training_output.histograms.shape == (120, 512)
        assert training_output.projection.shape == (120, 2)
        assert training_output.model.reference_histogram.shape == (512,)
        assert training_output.model.corner_index == 3

    def test_projection_of_training_histograms(self, training_output):
        projected = project_histograms(training_output.histograms[:3], training_output.pca_mean,
                                       training_output.pca_eigenvectors)
        np.testing.assert_allclose(projected, training_output.projection[:3], atol=1e-5)

    def test_too_few_samples(self):
        samples = [Sample(index=i, time_sec=i * 5.0, histogram=np.full(512, 1 / 512, dtype=np.float32))
                   for i in range(4)]
        with pytest.raises(InsufficientSamplesError):
            train_logo_model(samples, make_config())

    def test_k_larger_than_samples(self):
        rng = np.random.default_rng(3)
        samples = []
        for i in range(5):
            hist = rng.random(512).astype(np.float32)
            samples.append(Sample(index=i, time_sec=i * 5.0, histogram=hist / hist.sum()))
        with pytest.raises(ModelTrainingError):
            train_logo_model(samples, make_config(k=6))
