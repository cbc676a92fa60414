#!/usr/bin/env python3

import logging
from typing import Any, Callable, Dict, Optional

from .classifiers import LogoClassifier, build_classifier
from .config import DetectorConfig
from .data_models import DetectionResult
from .intervals import detect_ad_intervals
from .playlist import Playlist, load_playlist
from .refinement import BoundaryRefiner
from .results import annotate_program_date_times, build_result_payload
from .sampler import sample_training_frames
from .training import train_logo_model
from .utils import Timer, format_duration, format_seconds
from .video_processing import OpenCVFrameSource


class LogoDetector:
    """
    Détecteur de publicités par absence du logo de la chaîne.

    Enchaîne échantillonnage, entraînement, classification, machine à états
    et affinement des bornes sur une playlist HLS.
    """

    def __init__(self, config: DetectorConfig,
                 frame_source=None,
                 playlist_loader: Optional[Callable[[str, float], Playlist]] = None):
        """
        Initialise le détecteur.

        Args:
            config: Paramètres du job (validés ici)
            frame_source: Fabrique de sessions de décodage, OpenCV par défaut
            playlist_loader: Fonction (locator, timeout) -> Playlist, téléchargement HTTP/fichier par défaut
        """
        self.config = config.validate()
        self.frame_source = frame_source or OpenCVFrameSource()
        self.playlist_loader = playlist_loader or load_playlist
        self.logger = logging.getLogger(__name__)

        self.playlist: Optional[Playlist] = None
        self.classifier: Optional[LogoClassifier] = None

    def analyze(self) -> DetectionResult:
        """
        Analyse complète de la playlist.

        Returns:
            Résultat de la détection, intervalles dans l'ordre des débuts grossiers
            (l'affinement peut faire chevaucher deux intervalles voisins)

        Raises:
            AdsDetectorError: Toute erreur fatale du pipeline
        """
        config = self.config
        self.logger.info(f"🚀 Analyse de {config.m3u8} (coin {config.corner_name}, "
                         f"stratégie {config.strategy})")

        with Timer("Analyse") as timer:
            self.playlist = self.playlist_loader(config.m3u8, config.http_timeout_sec)
            total = self.playlist.total_duration_sec

            samples = sample_training_frames(config, total, self.frame_source)
            training = train_logo_model(samples, config)

            self.classifier = build_classifier(config)
            classification = self.classifier.classify(training)
            self.logger.info(f"📊 Classification: {classification}")

            ads = detect_ad_intervals(
                training.sample_times,
                classification.enter_absent,
                classification.exit_present,
                total,
                config.min_ad_sec,
                config.enter_consecutive,
                config.exit_consecutive,
            )
            self.logger.info(f"📺 {len(ads)} intervalles publicitaires avant affinement")

            if config.refine and ads:
                BoundaryRefiner(config, self.classifier, self.frame_source).refine(ads, total)

            annotate_program_date_times(ads, self.playlist)

        result = DetectionResult(
            m3u8=config.m3u8,
            total_duration_sec=total,
            elapsed_sec=timer.elapsed,
            training=training,
            classification=classification,
            ads=ads,
        )
        self._log_summary(result)
        return result

    def to_payload(self, result: DetectionResult) -> Dict[str, Any]:
        detection = self.classifier.detection_params() if self.classifier is not None else None
        return build_result_payload(result, self.config, detection)

    def _log_summary(self, result: DetectionResult) -> None:
        self.logger.info("=" * 60)
        self.logger.info("📋 RÉSUMÉ DE L'ANALYSE")
        self.logger.info("=" * 60)
        self.logger.info(f"⏱️ Temps d'analyse: {format_duration(result.elapsed_sec)}")
        self.logger.info(f"🎞️ Échantillons: {result.training.sample_count}")
        self.logger.info(f"📺 Publicités: {len(result.ads)} "
                         f"({format_duration(result.total_ad_duration)} au total)")
        for i, ad in enumerate(result.ads, 1):
            marker = " [affiné]" if ad.refined else ""
            self.logger.info(f"  {i}. {format_seconds(ad.start_sec)} -> {format_seconds(ad.end_sec)}{marker}")
