#!/usr/bin/env python3

"""
Échantillonnage parallèle des frames par tranches de temps.

Chaque worker ouvre sa propre session de décodage et parcourt sa tranche dans
l'ordre chronologique, ce qui limite les seeks arrière sur un flux HLS.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np

from .config import DetectorConfig, get_thread_count, logging_config, training_config
from .data_models import Sample
from .exceptions import InsufficientSamplesError, ParallelPoolFailure, WorkerDecodeFailure
from .features import corner_histogram, extract_corner_roi
from .utils import ProgressReporter


logger = logging.getLogger(__name__)

T = TypeVar('T')


def build_sample_times(total_duration_sec: float, every_sec: float) -> List[float]:
    """Timestamps 0, every, 2*every... strictement inférieurs à la durée totale."""
    times = []
    i = 0
    while True:
        t = i * every_sec
        if t >= total_duration_sec:
            break
        times.append(t)
        i += 1
    return times


def bucket_by_time(times: Sequence[float], total_duration_sec: float, n_buckets: int) -> List[List[int]]:
    """
    Répartit les indices de timestamps en tranches proportionnelles au temps.

    Args:
        times: Timestamps à traiter
        total_duration_sec: Durée totale de la playlist
        n_buckets: Nombre de tranches (= nombre de workers)

    Returns:
        Liste de tranches, chacune triée par timestamp croissant
    """
    n_buckets = max(1, n_buckets)
    buckets: List[List[int]] = [[] for _ in range(n_buckets)]
    for idx, t in enumerate(times):
        ratio = t / total_duration_sec if total_duration_sec > 0 else 0.0
        b = min(n_buckets - 1, max(0, int(ratio * n_buckets)))
        buckets[b].append(idx)
    for bucket in buckets:
        bucket.sort(key=lambda i: times[i])
    return buckets


def run_bucketed_frames(locator: str,
                        times: Sequence[float],
                        total_duration_sec: float,
                        threads: int,
                        frame_source,
                        evaluate: Callable[[np.ndarray, float], T],
                        phase: str = "sampling",
                        progress: Optional[ProgressReporter] = None) -> List[Optional[T]]:
    """
    Évalue une fonction sur la frame de chaque timestamp avec un pool de workers.

    Args:
        locator: Playlist à décoder
        times: Timestamps à lire
        total_duration_sec: Durée totale (pour la répartition en tranches)
        threads: Nombre de workers demandé (0 = nombre de coeurs)
        frame_source: Objet exposant open(locator) -> lecteur avec read_at(t) et close()
        evaluate: Fonction appliquée à chaque frame lisible
        phase: Nom de la phase pour les messages d'erreur
        progress: Rapporteur de progression optionnel

    Returns:
        Un résultat par timestamp (None si la frame est illisible)

    Raises:
        ParallelPoolFailure: Première exception d'un worker, après la fin de tous les workers
    """
    slots: List[Optional[T]] = [None] * len(times)
    if not times:
        return slots

    n_workers = get_thread_count(threads, len(times))
    buckets = bucket_by_time(times, total_duration_sec, n_workers)
    logger.debug(f"{phase}: {len(times)} timestamps répartis sur {n_workers} workers")

    def worker(bucket: List[int]) -> None:
        if not bucket:
            return
        reader = frame_source.open(locator)
        try:
            for idx in bucket:
                t = times[idx]
                try:
                    frame = reader.read_at(t)
                except WorkerDecodeFailure as e:
                    logger.debug(f"{phase}: {e}")
                    frame = None
                if frame is not None:
                    slots[idx] = evaluate(frame, t)
                if progress is not None:
                    progress.update()
        finally:
            reader.close()

    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = [executor.submit(worker, bucket) for bucket in buckets]

    for future in futures:
        error = future.exception()
        if error is not None:
            raise ParallelPoolFailure(phase, error) from error

    return slots


def sample_training_frames(config: DetectorConfig, total_duration_sec: float, frame_source) -> List[Sample]:
    """
    Lit les frames d'entraînement et calcule l'histogramme de la ROI de chacune.

    Args:
        config: Paramètres du job
        total_duration_sec: Durée totale de la playlist
        frame_source: Fabrique de sessions de décodage

    Returns:
        Échantillons lisibles, ordonnés par timestamp et réindexés de 0 à N-1

    Raises:
        InsufficientSamplesError: Moins de 5 timestamps ou de 5 frames lisibles
        ParallelPoolFailure: Erreur d'un worker
    """
    times = build_sample_times(total_duration_sec, config.sample_every_sec)
    if len(times) < training_config.MIN_SAMPLES:
        raise InsufficientSamplesError(
            f"pas assez d'échantillons: {len(times)} timestamps "
            f"(minimum {training_config.MIN_SAMPLES})")

    capture = config.capture_rois
    corner = config.corner_index

    def evaluate(frame: np.ndarray, t: float):
        roi = extract_corner_roi(frame, config.roi_width_pct, corner)
        return corner_histogram(roi), (roi if capture else None)

    progress = ProgressReporter(
        len(times), "Échantillonnage",
        logging_config.PROGRESS_REPORT_FREQUENCY['training'], logger)

    logger.info(f"🎞️ Échantillonnage de {len(times)} frames (toutes les {config.sample_every_sec}s)")
    results = run_bucketed_frames(config.m3u8, times, total_duration_sec, config.threads,
                                  frame_source, evaluate, phase="training", progress=progress)

    samples: List[Sample] = []
    for t, result in zip(times, results):
        if result is None:
            continue
        hist, roi = result
        samples.append(Sample(index=len(samples), time_sec=t, histogram=hist, roi=roi))

    skipped = len(times) - len(samples)
    if skipped:
        logger.warning(f"⚠️ {skipped} frames illisibles ignorées")
    if len(samples) < training_config.MIN_SAMPLES:
        raise InsufficientSamplesError(
            f"pas assez de frames lisibles: {len(samples)} "
            f"(minimum {training_config.MIN_SAMPLES})")
    return samples
