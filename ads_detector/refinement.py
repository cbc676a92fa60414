#!/usr/bin/env python3

"""
Affinement des bornes des intervalles publicitaires par une seconde passe plus fine.
"""

import logging
from typing import Dict, List, Tuple

from .config import DetectorConfig, logging_config, refinement_config
from .data_models import Interval, RefinePoint
from .exceptions import ParallelPoolFailure
from .sampler import run_bucketed_frames
from .utils import ProgressReporter


class BoundaryRefiner:
    """Sonde une fenêtre avant chaque borne et recale le début et la fin sur les transitions du logo."""

    def __init__(self, config: DetectorConfig, classifier, frame_source):
        self.config = config
        self.classifier = classifier
        self.frame_source = frame_source
        self.logger = logging.getLogger(__name__)

    def _window_times(self, a: float, b: float) -> List[float]:
        times = []
        step = self.config.refine_step_sec
        i = 0
        while True:
            t = a + i * step
            if t > b + refinement_config.TIME_EPSILON:
                break
            times.append(t)
            i += 1
        return times

    def build_points(self, intervals: List[Interval], total_duration_sec: float) -> List[RefinePoint]:
        """
        Construit la liste plate des sondes pour tous les intervalles.

        Fenêtre de début : [début - 30s, début], fenêtre de fin : [fin - 30s, fin],
        bornées à [0, durée totale].
        """
        window = self.config.refine_window_sec
        points: List[RefinePoint] = []
        for idx, interval in enumerate(intervals):
            start_a = max(0.0, interval.start_sec - window)
            start_b = min(total_duration_sec, interval.start_sec)
            end_a = max(0.0, interval.end_sec - window)
            end_b = min(total_duration_sec, interval.end_sec)
            for pos, t in enumerate(self._window_times(start_a, start_b)):
                points.append(RefinePoint(idx, True, pos, t))
            for pos, t in enumerate(self._window_times(end_a, end_b)):
                points.append(RefinePoint(idx, False, pos, t))
        return points

    @staticmethod
    def refined_start(window: List[Tuple[float, bool]], coarse_start: float) -> float:
        """Début affiné : premier instant sans logo, ou première transition présent -> absent."""
        if not window:
            return coarse_start
        if not window[0][1]:
            return window[0][0]
        for (_, prev_has), (t, has) in zip(window, window[1:]):
            if prev_has and not has:
                return t
        return coarse_start

    @staticmethod
    def refined_end(window: List[Tuple[float, bool]], coarse_end: float) -> float:
        """Fin affinée : premier instant où le logo est de retour."""
        for t, has in window:
            if has:
                return t
        return coarse_end

    def refine(self, intervals: List[Interval], total_duration_sec: float) -> List[Interval]:
        """
        Affine les intervalles en place.

        Args:
            intervals: Intervalles grossiers issus de la machine à états
            total_duration_sec: Durée totale de la playlist

        Returns:
            Les mêmes intervalles, bornes éventuellement recalées
        """
        if not intervals:
            return intervals

        points = self.build_points(intervals, total_duration_sec)
        self.logger.info(f"🔍 Affinement de {len(intervals)} intervalles "
                         f"({len(points)} sondes, pas={self.config.refine_step_sec}s)")

        progress = ProgressReporter(
            len(points), "Affinement",
            logging_config.PROGRESS_REPORT_FREQUENCY['refinement'], self.logger)

        def evaluate(frame, t):
            return bool(self.classifier.has_logo(frame))

        try:
            results = run_bucketed_frames(self.config.m3u8, [p.time_sec for p in points],
                                          total_duration_sec, self.config.threads,
                                          self.frame_source, evaluate, phase="refinement",
                                          progress=progress)
        except ParallelPoolFailure as e:
            self.logger.warning(f"⚠️ Échec de l'affinement parallèle, intervalles conservés tels quels: {e}")
            return intervals

        windows: Dict[Tuple[int, bool], List[Tuple[float, bool]]] = {}
        for point, has in zip(points, results):
            # Frame illisible : considérée sans logo
            windows.setdefault((point.interval_index, point.is_start_window), []).append(
                (point.time_sec, bool(has) if has is not None else False))

        for idx, interval in enumerate(intervals):
            coarse_start, coarse_end = interval.start_sec, interval.end_sec
            start = self.refined_start(windows.get((idx, True), []), coarse_start)
            end = self.refined_end(windows.get((idx, False), []), coarse_end)

            if end <= start or (end - start) < self.config.min_ad_sec:
                self.logger.debug(f"Affinement rejeté pour {interval}: {start:.1f}s -> {end:.1f}s")
                continue

            interval.start_sec = start
            interval.end_sec = end
            interval.refined = True
            self.logger.info(f"Intervalle affiné: {coarse_start:.1f}s -> {coarse_end:.1f}s devient "
                             f"{start:.1f}s -> {end:.1f}s "
                             f"(début: {start - coarse_start:+.1f}s, fin: {end - coarse_end:+.1f}s)")

        return intervals

