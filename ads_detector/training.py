#!/usr/bin/env python3

"""
Construction du modèle "logo présent" à partir des échantillons.
"""

import logging
from typing import List, Sequence

import cv2
import numpy as np

from .config import DetectorConfig, training_config
from .data_models import LogoModel, Sample, TrainingOutput
from .exceptions import InsufficientSamplesError, ModelTrainingError
from .features import bhattacharyya_distance
from .utils import mean, quantile, stddev


logger = logging.getLogger(__name__)


def project_histograms(histograms: np.ndarray, pca_mean: np.ndarray, eigenvectors: np.ndarray) -> np.ndarray:
    """Projette des histogrammes (N x 512) dans l'espace PCA appris."""
    data = np.asarray(histograms, dtype=np.float32).reshape(-1, pca_mean.shape[1])
    return cv2.PCAProject(data, pca_mean, eigenvectors)


def _mean_histogram(data: np.ndarray, indices: Sequence[int]) -> np.ndarray:
    if len(indices) == 0:
        return np.zeros(data.shape[1], dtype=np.float32)
    return data[list(indices)].mean(axis=0).astype(np.float32)


def _distances(data: np.ndarray, indices: Sequence[int], reference: np.ndarray) -> List[float]:
    return [bhattacharyya_distance(data[i], reference) for i in indices]


def train_logo_model(samples: List[Sample], config: DetectorConfig) -> TrainingOutput:
    """
    Entraîne le modèle de logo : PCA 2D, k-means, sélection des graines et seuil.

    Le cluster le plus peuplé est supposé correspondre aux frames avec logo
    (le programme dure plus longtemps que les pubs).

    Args:
        samples: Échantillons ordonnés par timestamp
        config: Paramètres du job

    Returns:
        Sortie d'entraînement complète

    Raises:
        InsufficientSamplesError: Moins de 5 échantillons
        ModelTrainingError: PCA ou k-means impossible
    """
    n = len(samples)
    if n < training_config.MIN_SAMPLES:
        raise InsufficientSamplesError(
            f"pas assez de frames lisibles: {n} (minimum {training_config.MIN_SAMPLES})")
    if config.k > n:
        raise ModelTrainingError(f"k={config.k} supérieur au nombre d'échantillons ({n})")

    data = np.vstack([s.histogram.reshape(1, -1) for s in samples]).astype(np.float32)

    try:
        pca_mean, eigenvectors = cv2.PCACompute(data, mean=None,
                                                maxComponents=training_config.PCA_COMPONENTS)
        projection = cv2.PCAProject(data, pca_mean, eigenvectors)

        cv2.setRNGSeed(training_config.RANDOM_SEED)
        criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
                    training_config.KMEANS_MAX_ITER, training_config.KMEANS_EPS)
        _, labels, _ = cv2.kmeans(np.ascontiguousarray(projection, dtype=np.float32), config.k, None,
                                  criteria, training_config.KMEANS_ATTEMPTS, cv2.KMEANS_PP_CENTERS)
    except cv2.error as e:
        raise ModelTrainingError(f"échec PCA/k-means: {e}") from e

    labels = [int(v) for v in labels.reshape(-1)]
    counts = [0] * config.k
    for label in labels:
        counts[label] += 1
    logo_cluster = counts.index(max(counts))

    logo_idx = [i for i, label in enumerate(labels) if label == logo_cluster]
    non_logo_idx = [i for i, label in enumerate(labels) if label != logo_cluster]

    # Partie dense du cluster : écarte les frames sans logo absorbées par k-means
    mean_hist = _mean_histogram(data, logo_idx)
    d_logo_all = _distances(data, logo_idx, mean_hist)
    cut = quantile(d_logo_all, training_config.SEED_QUANTILE)
    seeds = [i for i, d in zip(logo_idx, d_logo_all) if d <= cut]
    if len(seeds) < min(training_config.SEED_MIN_COUNT, len(logo_idx)):
        seeds = list(logo_idx)
    else:
        mean_hist = _mean_histogram(data, seeds)

    seed_set = set(seeds)
    d_logo = _distances(data, seeds, mean_hist)
    effective_non_logo = non_logo_idx + [i for i in logo_idx if i not in seed_set]
    d_non_logo = _distances(data, effective_non_logo, mean_hist)

    threshold = mean(d_logo) + training_config.THRESHOLD_STDDEV_FACTOR * stddev(d_logo)
    if d_non_logo:
        m_logo = mean(d_logo)
        m_non = mean(d_non_logo)
        if m_non > m_logo:
            threshold = (m_logo + m_non) / 2.0
    threshold = min(max(threshold, training_config.THRESHOLD_MIN), training_config.THRESHOLD_MAX)

    model = LogoModel(
        corner_index=config.corner_index,
        reference_histogram=mean_hist,
        distance_threshold=threshold,
        seed_sample_indices=seeds,
    )
    logger.info(f"🧠 Modèle entraîné: seuil={threshold:.4f}, graines={len(seeds)}, "
                f"cluster logo={logo_cluster} ({counts[logo_cluster]}/{n} échantillons)")

    return TrainingOutput(
        model=model,
        sample_every_sec=config.sample_every_sec,
        samples=samples,
        histograms=data,
        projection=np.asarray(projection, dtype=np.float32),
        pca_mean=pca_mean,
        pca_eigenvectors=eigenvectors,
        kmeans_labels=labels,
        logo_cluster_label=logo_cluster,
    )
