#!/usr/bin/env python3

"""
Configuration centralisée pour le détecteur de publicités.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError


class TrainingConfig:
    """Configuration pour l'échantillonnage et l'entraînement du modèle de logo."""

    # Nombre minimum d'échantillons pour entraîner
    MIN_SAMPLES = 5

    # Histogramme HSV joint 8x8x8 sur la ROI
    HIST_BINS = (8, 8, 8)
    HIST_RANGES = [0, 180, 0, 256, 0, 256]
    HIST_SIZE = 8 * 8 * 8

    # Réduction de la ROI avant calcul (coût CPU)
    ROI_DOWNSCALE_SIZE = 64
    # Rayon du masque circulaire centré (fraction du plus petit côté)
    ROI_MASK_RADIUS_RATIO = 0.40
    # Bornes du pourcentage de largeur de ROI
    ROI_PCT_MIN = 0.01
    ROI_PCT_MAX = 1.0

    # k-means sur la projection PCA
    PCA_COMPONENTS = 2
    KMEANS_ATTEMPTS = 5
    KMEANS_MAX_ITER = 40
    KMEANS_EPS = 1e-4
    RANDOM_SEED = 42

    # Sélection des graines (partie dense du cluster logo)
    SEED_QUANTILE = 0.85
    SEED_MIN_COUNT = 5

    # Seuil de distance de Bhattacharyya
    THRESHOLD_STDDEV_FACTOR = 5.0
    THRESHOLD_MIN = 0.05
    THRESHOLD_MAX = 0.95


class ClassifierDefaults:
    """Valeurs par défaut et constantes des stratégies de classification."""

    STRATEGIES = ('distance', 'dbscan', 'lof', 'knn', 'template')

    # Auto-estimation de l'epsilon DBSCAN
    DBSCAN_EPS_FACTOR = 1.6
    DBSCAN_FALLBACK_EPS = 0.5

    # KNN : marge appliquée pour ne jamais rejeter une graine
    KNN_MIN_SEEDS = 3
    KNN_SEED_MARGIN = 1.02

    # Mode template (tokayo)
    TEMPLATE_BLUR_KERNEL = (3, 3)
    TEMPLATE_MORPH_KERNEL = (5, 5)
    TEMPLATE_PAD_PX = 2
    TEMPLATE_FALLBACK_THRESHOLD = 0.5
    MCD_SUPPORT_FRACTION = 0.75
    # Racine du quantile 97.5% d'un chi2 à 2 degrés de liberté
    MCD_MAHALANOBIS_CUTOFF = 2.716


class RefinementConfig:
    """Configuration pour l'affinement des bornes."""

    WINDOW_SEC = 30.0
    STEP_SEC = 5.0
    TIME_EPSILON = 1e-9


class LoggingConfig:
    """Configuration pour les logs."""

    LOG_FORMAT = '%(asctime)s - %(levelname)s - %(module)s:%(funcName)s - %(message)s'
    LOG_LEVEL = 'INFO'
    LOGGER_NAME = 'ads_detector'

    # Fréquence d'affichage des progressions
    PROGRESS_REPORT_FREQUENCY = {
        'training': 50,
        'refinement': 50,
    }


class DefaultConfig:
    """Configuration par défaut pour l'ensemble du système."""

    CORNER_NAMES = ('top_left', 'top_right', 'bottom_left', 'bottom_right')
    CORNER_FLAGS = ('tl', 'tr', 'bl', 'br')

    OUTPUT_PATH = 'ads.json'
    HTTP_TIMEOUT_SEC = 30.0
    HTTP_USER_AGENT = 'ads-detector/1.0'

    # Variables d'environnement reconnues
    ENV_THREADS = 'ADS_DETECTOR_THREADS'
    ENV_LOG_LEVEL = 'ADS_DETECTOR_LOG_LEVEL'


# Instance globale pour un accès facile
training_config = TrainingConfig()
classifier_defaults = ClassifierDefaults()
refinement_config = RefinementConfig()
logging_config = LoggingConfig()
default_config = DefaultConfig()


@dataclass
class DetectorConfig:
    """Paramètres d'un job de détection, validés en un seul endroit."""

    m3u8: str = ''
    corner_index: Optional[int] = None
    output_path: str = default_config.OUTPUT_PATH
    sample_every_sec: float = 5.0
    roi_width_pct: float = 0.15
    k: int = 2
    min_ad_sec: float = 60.0
    threads: int = 0

    strategy: str = 'distance'
    # distance
    smooth_window: int = 3
    enter_mult: float = 1.25
    exit_mult: float = 1.00
    # hystérésis (toutes stratégies)
    enter_consecutive: int = 1
    exit_consecutive: int = 1
    # dbscan
    dbscan_eps: float = 0.0
    dbscan_min_pts: int = 5
    # lof
    lof_k: int = 10
    lof_threshold: float = 1.60
    # knn
    knn_k: int = 10
    knn_quantile: float = 0.95
    # template (0 = auto)
    template_threshold: float = 0.5

    refine: bool = True
    refine_step_sec: float = refinement_config.STEP_SEC
    refine_window_sec: float = refinement_config.WINDOW_SEC

    http_timeout_sec: float = default_config.HTTP_TIMEOUT_SEC
    debug: bool = False
    quiet: bool = False

    @property
    def corner_name(self) -> str:
        if self.corner_index is None or not 0 <= self.corner_index < 4:
            return default_config.CORNER_NAMES[0]
        return default_config.CORNER_NAMES[self.corner_index]

    @property
    def capture_rois(self) -> bool:
        """Les pixels de la ROI sont conservés pour le mode template ou le debug."""
        return self.strategy == 'template' or self.debug

    def validate(self) -> 'DetectorConfig':
        """
        Valide tous les paramètres avant le démarrage du pipeline.

        Returns:
            La configuration elle-même

        Raises:
            ConfigurationError: Au premier paramètre invalide
        """
        if not self.m3u8:
            raise ConfigurationError("--m3u8 est obligatoire")
        if self.corner_index is None:
            raise ConfigurationError("coin obligatoire: choisir un parmi --tl --tr --bl --br")
        if not 0 <= self.corner_index <= 3:
            raise ConfigurationError("le coin doit être compris entre 0 et 3")
        if not 0.0 < self.roi_width_pct <= 1.0:
            raise ConfigurationError("--roi doit être dans (0,1] ou (0,100] en pourcentage")
        if self.sample_every_sec <= 0.0:
            raise ConfigurationError("--every-sec doit être > 0")
        if self.k < 2:
            raise ConfigurationError("--k doit être >= 2")
        if self.min_ad_sec < 0.0:
            raise ConfigurationError("--min-ad-sec doit être >= 0")
        if self.threads < 0:
            raise ConfigurationError("--threads doit être >= 0")
        if self.strategy not in classifier_defaults.STRATEGIES:
            raise ConfigurationError(
                f"stratégie inconnue: {self.strategy} "
                f"(attendu: {', '.join(classifier_defaults.STRATEGIES)})")
        if self.smooth_window < 1:
            raise ConfigurationError("--smooth doit être >= 1")
        if not self.enter_mult > 0.0 or not self.exit_mult > 0.0:
            raise ConfigurationError("--enter-mult et --exit-mult doivent être > 0")
        if self.exit_mult > self.enter_mult:
            raise ConfigurationError("--exit-mult doit être <= --enter-mult")
        if self.enter_consecutive < 1 or self.exit_consecutive < 1:
            raise ConfigurationError("--enter-n et --exit-n doivent être >= 1")
        if self.dbscan_eps < 0.0:
            raise ConfigurationError("--dbscan-eps doit être >= 0")
        if self.dbscan_min_pts < 2:
            raise ConfigurationError("--dbscan-minpts doit être >= 2")
        if self.lof_k < 2:
            raise ConfigurationError("--lof-k doit être >= 2")
        if not self.lof_threshold > 0.0:
            raise ConfigurationError("--lof-th doit être > 0")
        if self.knn_k < 1:
            raise ConfigurationError("--knn-k doit être >= 1")
        if not 0.0 < self.knn_quantile <= 1.0:
            raise ConfigurationError("--knn-q doit être dans (0,1]")
        if not 0.0 <= self.template_threshold <= 1.0:
            raise ConfigurationError("--tokayo-th doit être dans [0,1] (0 = auto)")
        if not 0.0 < self.refine_window_sec:
            raise ConfigurationError("la fenêtre d'affinement doit être > 0")
        if not 0.0 < self.refine_step_sec <= self.refine_window_sec:
            raise ConfigurationError("--refine-step-sec doit être dans (0, fenêtre]")
        if self.http_timeout_sec <= 0.0:
            raise ConfigurationError("le timeout HTTP doit être > 0")
        return self


def get_thread_count(threads: int, work_items: Optional[int] = None) -> int:
    """
    Retourne le nombre de workers à utiliser.

    Args:
        threads: Valeur demandée (0 = nombre de coeurs disponibles)
        work_items: Nombre d'éléments à traiter, pour ne pas ouvrir plus de sessions que nécessaire

    Returns:
        Nombre de workers (>= 1)
    """
    wanted = threads if threads > 0 else (os.cpu_count() or 1)
    if work_items is not None:
        wanted = min(wanted, work_items)
    return max(1, wanted)


def get_env_threads(default: int = 0) -> int:
    """Lit le nombre de threads par défaut depuis l'environnement."""
    raw = os.environ.get(default_config.ENV_THREADS)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{default_config.ENV_THREADS} invalide: {raw!r}")
