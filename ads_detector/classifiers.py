#!/usr/bin/env python3

"""
Stratégies de classification "logo présent / absent".

Chaque stratégie classe les échantillons d'entraînement puis sert de détecteur
pour les frames sondées pendant l'affinement des bornes.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from sklearn.cluster import DBSCAN
from sklearn.covariance import MinCovDet
from sklearn.neighbors import LocalOutlierFactor, NearestNeighbors

from .config import DetectorConfig, classifier_defaults, training_config
from .data_models import ClassificationResult, TrainingOutput
from .exceptions import ConfigurationError, InsufficientSamplesError, ModelTrainingError
from .features import (bhattacharyya_distance, bhattacharyya_matrix, blurred_gray,
                       corner_histogram, extract_corner_roi)
from .training import project_histograms
from .utils import quantile


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def smooth_distances(values: Sequence[float], window: int) -> List[float]:
    """
    Moyenne glissante centrée, tronquée aux bords.

    Args:
        values: Distances brutes
        window: Taille de la fenêtre (demi-fenêtre = window // 2)

    Returns:
        Distances lissées, même longueur
    """
    half = max(1, window) // 2
    n = len(values)
    smoothed = []
    for i in range(n):
        lo = max(0, i - half)
        hi = min(n - 1, i + half)
        chunk = values[lo:hi + 1]
        smoothed.append(sum(chunk) / len(chunk))
    return smoothed


def auto_dbscan_eps(points: np.ndarray, min_pts: int) -> float:
    """
    Estime epsilon : médiane de la distance au (k-1)-ème plus proche voisin, x1.6.

    Returns:
        Epsilon estimé, 0.0 s'il n'est pas calculable
    """
    n = len(points)
    if n <= 2:
        return 0.0
    k = max(2, min(min_pts, n - 1))
    # La première colonne est le point lui-même
    distances, _ = NearestNeighbors(n_neighbors=k).fit(points).kneighbors(points)
    kth = sorted(float(d) for d in distances[:, k - 1])
    return kth[len(kth) // 2] * classifier_defaults.DBSCAN_EPS_FACTOR


def largest_gap_threshold(scores: Sequence[float]) -> Tuple[float, float]:
    """
    Seuil au milieu du plus grand écart entre scores triés.

    Returns:
        Tuple (seuil, écart), seuil de repli 0.5 si aucun écart positif
    """
    ordered = sorted(scores)
    best_gap = 0.0
    threshold = 0.0
    for lo, hi in zip(ordered, ordered[1:]):
        gap = hi - lo
        if gap > best_gap:
            best_gap = gap
            threshold = (lo + hi) / 2.0
    if threshold <= 0.0:
        threshold = classifier_defaults.TEMPLATE_FALLBACK_THRESHOLD
    return threshold, best_gap


class LogoClassifier:
    """Interface commune des stratégies."""

    name = ''
    json_strategy = ''

    def __init__(self, config: DetectorConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.training: Optional[TrainingOutput] = None

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        """Classe tous les échantillons d'entraînement et prépare le détecteur de frames."""
        raise NotImplementedError

    def has_logo(self, frame: np.ndarray) -> bool:
        """Décide si le logo est visible sur une nouvelle frame."""
        raise NotImplementedError

    def detection_params(self) -> Dict[str, Any]:
        """Paramètres effectivement utilisés, pour le document JSON."""
        return {'strategy': self.json_strategy}

    def _frame_histogram(self, frame: np.ndarray) -> np.ndarray:
        roi = extract_corner_roi(frame, self.config.roi_width_pct, self.config.corner_index)
        return corner_histogram(roi)

    def _binary_result(self, has_logo: List[bool], scores: Optional[List[float]] = None,
                       details: Optional[Dict[str, Any]] = None) -> ClassificationResult:
        return ClassificationResult(
            strategy=self.name,
            has_logo=has_logo,
            enter_absent=[not v for v in has_logo],
            exit_present=list(has_logo),
            scores=scores,
            details=details or {},
        )


class DistanceClassifier(LogoClassifier):
    """Distance de Bhattacharyya à l'histogramme moyen, lissée, avec hystérésis."""

    name = 'distance'
    json_strategy = 'bhattacharyya'

    def __init__(self, config: DetectorConfig):
        super().__init__(config)
        self.enter_threshold = 0.0
        self.exit_threshold = 0.0

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        self.training = training
        model = training.model
        raw = [bhattacharyya_distance(h, model.reference_histogram) for h in training.histograms]
        smoothed = smooth_distances(raw, self.config.smooth_window)

        self.enter_threshold = clamp01(model.distance_threshold * self.config.enter_mult)
        self.exit_threshold = clamp01(model.distance_threshold * self.config.exit_mult)

        enter_absent = [d >= self.enter_threshold for d in smoothed]
        exit_present = [d <= self.exit_threshold for d in smoothed]
        self.logger.info(f"📏 Distance: seuil={model.distance_threshold:.4f}, "
                         f"entrée={self.enter_threshold:.4f}, sortie={self.exit_threshold:.4f}, "
                         f"lissage={self.config.smooth_window}")
        return ClassificationResult(
            strategy=self.name,
            has_logo=list(exit_present),
            enter_absent=enter_absent,
            exit_present=exit_present,
            scores=smoothed,
            details={'rawDistances': raw},
        )

    def has_logo(self, frame: np.ndarray) -> bool:
        model = self.training.model
        dist = bhattacharyya_distance(self._frame_histogram(frame), model.reference_histogram)
        return dist <= model.distance_threshold

    def detection_params(self) -> Dict[str, Any]:
        return {
            'strategy': self.json_strategy,
            'smoothWindow': self.config.smooth_window,
            'enterMult': self.config.enter_mult,
            'exitMult': self.config.exit_mult,
            'enterThreshold': self.enter_threshold,
            'exitThreshold': self.exit_threshold,
        }


class DbscanClassifier(LogoClassifier):
    """DBSCAN sur la projection PCA ; le cluster logo est celui qui contient le plus de graines."""

    name = 'dbscan'
    json_strategy = 'outlier'
    outlier_mode = 'dbscan'

    def __init__(self, config: DetectorConfig):
        super().__init__(config)
        self.eps = 0.0
        self.min_pts = config.dbscan_min_pts
        self.logo_label = -1
        self.labels: List[int] = []
        self._logo_core_points = np.empty((0, 2), dtype=np.float64)

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        self.training = training
        points = np.asarray(training.projection, dtype=np.float64)
        n = len(points)

        self.min_pts = max(2, min(self.config.dbscan_min_pts, max(2, n)))
        self.eps = self.config.dbscan_eps if self.config.dbscan_eps > 0.0 else auto_dbscan_eps(points, self.min_pts)
        if self.eps <= 0.0:
            self.eps = classifier_defaults.DBSCAN_FALLBACK_EPS
        self.logger.info(f"🔎 DBSCAN: eps={self.eps:.5f}, minPts={self.min_pts}")

        db = DBSCAN(eps=self.eps, min_samples=self.min_pts).fit(points)
        self.labels = [int(v) for v in db.labels_]

        cluster_labels = sorted(set(v for v in self.labels if v >= 0))
        sizes = {label: self.labels.count(label) for label in cluster_labels}
        seeds = set(training.model.seed_sample_indices)
        overlap = {label: sum(1 for i in seeds if self.labels[i] == label) for label in cluster_labels}

        self.logo_label = -1
        best_overlap = 0
        for label in cluster_labels:
            if overlap[label] > best_overlap:
                best_overlap = overlap[label]
                self.logo_label = label
        if self.logo_label >= 0:
            self.logger.info(f"DBSCAN: cluster logo choisi par les graines: label={self.logo_label}, "
                             f"graines={best_overlap}/{len(seeds)}, taille={sizes[self.logo_label]}")
        else:
            best_size = 0
            for label in cluster_labels:
                if sizes[label] > best_size:
                    best_size = sizes[label]
                    self.logo_label = label
            if self.logo_label >= 0:
                self.logger.info(f"DBSCAN: aucune graine dans un cluster, plus grand cluster retenu: "
                                 f"label={self.logo_label}, taille={best_size}")

        if self.logo_label < 0:
            self.logger.warning("⚠️ DBSCAN: aucun cluster dense, logo supposé présent partout")
            has_logo = [True] * n
        else:
            has_logo = [label == self.logo_label for label in self.labels]
            core = [i for i in db.core_sample_indices_ if self.labels[i] == self.logo_label]
            self._logo_core_points = points[core]

        return self._binary_result(has_logo, details={'labels': self.labels})

    def has_logo_projected(self, point: np.ndarray) -> bool:
        if self.logo_label < 0:
            return True
        if len(self._logo_core_points) == 0:
            return False
        dist = np.sqrt(((self._logo_core_points - point.reshape(1, -1)) ** 2).sum(axis=1))
        return bool(dist.min() <= self.eps)

    def has_logo(self, frame: np.ndarray) -> bool:
        point = project_histograms(self._frame_histogram(frame), self.training.pca_mean,
                                   self.training.pca_eigenvectors)
        return self.has_logo_projected(np.asarray(point, dtype=np.float64)[0])

    def dbscan_params(self) -> Dict[str, Any]:
        return {'eps': self.eps, 'minPts': self.min_pts, 'logoClusterLabel': self.logo_label}

    def detection_params(self) -> Dict[str, Any]:
        return {
            'strategy': self.json_strategy,
            'outlierMode': self.outlier_mode,
            'dbscan': self.dbscan_params(),
        }


class LofClassifier(LogoClassifier):
    """Local Outlier Factor sur la projection PCA : score élevé = pas de logo."""

    name = 'lof'
    json_strategy = 'outlier'
    outlier_mode = 'lof'

    def __init__(self, config: DetectorConfig):
        super().__init__(config)
        self.k_used = config.lof_k
        self.lof: Optional[LocalOutlierFactor] = None

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        self.training = training
        points = np.asarray(training.projection, dtype=np.float64)
        n = len(points)
        self.k_used = max(2, min(self.config.lof_k, max(2, n) - 1))
        self.logger.info(f"🔎 LOF: k={self.k_used}, seuil={self.config.lof_threshold}")

        self.lof = LocalOutlierFactor(n_neighbors=self.k_used, novelty=True).fit(points)
        scores = [float(-v) for v in self.lof.negative_outlier_factor_]
        has_logo = [s < self.config.lof_threshold for s in scores]
        return self._binary_result(has_logo, scores=scores)

    def has_logo(self, frame: np.ndarray) -> bool:
        point = project_histograms(self._frame_histogram(frame), self.training.pca_mean,
                                   self.training.pca_eigenvectors)
        score = float(-self.lof.score_samples(np.asarray(point, dtype=np.float64))[0])
        return score < self.config.lof_threshold

    def detection_params(self) -> Dict[str, Any]:
        return {
            'strategy': self.json_strategy,
            'outlierMode': self.outlier_mode,
            'lof': {'k': self.k_used, 'threshold': self.config.lof_threshold},
        }


class KnnClassifier(LogoClassifier):
    """Distance moyenne aux k graines les plus proches (histogrammes, Bhattacharyya)."""

    name = 'knn'
    json_strategy = 'outlier'
    outlier_mode = 'knn'

    def __init__(self, config: DetectorConfig):
        super().__init__(config)
        self.k_used = 0
        self.threshold = 0.0
        self.fallback: Optional[DbscanClassifier] = None
        self._seed_histograms = np.empty((0, training_config.HIST_SIZE), dtype=np.float32)

    def _knn_scores(self, distances: np.ndarray, exclude_self: Optional[Sequence[int]] = None) -> List[float]:
        """Moyenne des k plus petites distances de chaque ligne, en excluant la graine elle-même."""
        scores = []
        for row_idx, row in enumerate(distances):
            values = row
            if exclude_self is not None and exclude_self[row_idx] >= 0:
                values = np.delete(row, exclude_self[row_idx])
            if len(values) == 0:
                scores.append(0.0)
                continue
            kk = max(1, min(self.k_used, len(values)))
            nearest = np.partition(values, kk - 1)[:kk]
            scores.append(float(nearest.mean()))
        return scores

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        self.training = training
        seeds = list(training.model.seed_sample_indices)
        if len(seeds) < classifier_defaults.KNN_MIN_SEEDS:
            self.logger.warning(f"⚠️ KNN: pas assez de graines ({len(seeds)}), repli sur DBSCAN")
            self.fallback = DbscanClassifier(self.config)
            result = self.fallback.classify(training)
            result.strategy = self.name
            result.details['fallback'] = 'dbscan'
            return result

        self.k_used = max(1, min(self.config.knn_k, len(seeds) - 1))
        self._seed_histograms = training.histograms[seeds]

        distances = bhattacharyya_matrix(training.histograms, self._seed_histograms)
        seed_position = {s: pos for pos, s in enumerate(seeds)}
        exclude = [seed_position.get(i, -1) for i in range(len(training.histograms))]
        scores = self._knn_scores(distances, exclude)

        seed_scores = [scores[s] for s in seeds]
        self.threshold = quantile(seed_scores, self.config.knn_quantile)
        max_seed = max(seed_scores)
        if self.threshold < max_seed:
            # Aucune graine ne doit être rejetée
            self.threshold = max_seed * classifier_defaults.KNN_SEED_MARGIN

        self.logger.info(f"🔎 KNN: k={self.k_used}, q={self.config.knn_quantile}, "
                         f"seuil={self.threshold:.5f}, graines={len(seeds)}")
        has_logo = [s <= self.threshold for s in scores]
        return self._binary_result(has_logo, scores=scores)

    def has_logo(self, frame: np.ndarray) -> bool:
        if self.fallback is not None:
            return self.fallback.has_logo(frame)
        hist = self._frame_histogram(frame).reshape(1, -1)
        score = self._knn_scores(bhattacharyya_matrix(hist, self._seed_histograms))[0]
        return score <= self.threshold

    def detection_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            'strategy': self.json_strategy,
            'outlierMode': self.outlier_mode,
            'knn': {'k': self.k_used, 'quantile': self.config.knn_quantile, 'threshold': self.threshold},
        }
        if self.fallback is not None:
            params['knn']['fallback'] = 'dbscan'
            params['dbscan'] = self.fallback.dbscan_params()
        return params


class TemplateClassifier(LogoClassifier):
    """
    Mode "tokayo" : région statique de la ROI (médiane + écart-type pixel à pixel),
    puis corrélation croisée normalisée avec le template médian.
    """

    name = 'template'
    json_strategy = 'tokayo'

    def __init__(self, config: DetectorConfig):
        super().__init__(config)
        self.template: Optional[np.ndarray] = None
        self.sub_rect: Tuple[int, int, int, int] = (0, 0, 0, 0)
        self.roi_size: Tuple[int, int] = (0, 0)
        self.threshold = config.template_threshold
        self.largest_gap: Optional[float] = None
        self.mcd: Optional[Dict[str, Any]] = None

    def _gray_rois(self, training: TrainingOutput) -> List[np.ndarray]:
        rois = []
        for sample in training.samples:
            if sample.roi is None:
                raise InsufficientSamplesError(f"mode template: ROI manquante pour l'échantillon {sample.index}")
            rois.append(sample.roi)
        first_h, first_w = rois[0].shape[:2]
        self.roi_size = (first_w, first_h)
        return [self._prepare(roi) for roi in rois]

    def _prepare(self, roi: np.ndarray) -> np.ndarray:
        gray = blurred_gray(roi)
        if (gray.shape[1], gray.shape[0]) != self.roi_size:
            gray = cv2.resize(gray, self.roi_size, interpolation=cv2.INTER_AREA)
        return gray

    def _find_logo_region(self, stack: np.ndarray) -> Tuple[int, int, int, int]:
        """Plus grande zone à faible variance temporelle, bornée et élargie de 2 pixels."""
        std_img = stack.astype(np.float64).std(axis=0).astype(np.float32)
        std_norm = cv2.normalize(std_img, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        _, mask = cv2.threshold(std_norm, 0, 255, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)

        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, classifier_defaults.TEMPLATE_MORPH_KERNEL)
        mask = cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)

        contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        if not contours:
            raise ModelTrainingError("mode template: aucune région de logo trouvée")
        largest = max(contours, key=cv2.contourArea)

        x, y, w, h = cv2.boundingRect(largest)
        roi_w, roi_h = self.roi_size
        pad = classifier_defaults.TEMPLATE_PAD_PX
        x = max(0, x - pad)
        y = max(0, y - pad)
        w = min(roi_w - x, w + 2 * pad)
        h = min(roi_h - y, h + 2 * pad)
        return x, y, w, h

    def _ncc(self, gray: np.ndarray) -> float:
        x, y, w, h = self.sub_rect
        sub = gray[y:y + h, x:x + w]
        if sub.shape != self.template.shape:
            return 0.0
        result = cv2.matchTemplate(sub, self.template, cv2.TM_CCOEFF_NORMED)
        return float(np.nan_to_num(result[0, 0]))

    def _robust_covariance(self, projection: np.ndarray) -> Optional[Dict[str, Any]]:
        """Centre robuste (MCD) de la projection PCA et nombre d'inliers de Mahalanobis."""
        points = np.asarray(projection, dtype=np.float64)
        try:
            mcd = MinCovDet(support_fraction=classifier_defaults.MCD_SUPPORT_FRACTION,
                            random_state=training_config.RANDOM_SEED).fit(points)
        except (ValueError, np.linalg.LinAlgError) as e:
            self.logger.warning(f"⚠️ MCD impossible sur la projection: {e}")
            return None
        distances = np.sqrt(mcd.mahalanobis(points))
        inliers = int((distances <= classifier_defaults.MCD_MAHALANOBIS_CUTOFF).sum())
        return {
            'center': [float(v) for v in mcd.location_],
            'supportFraction': classifier_defaults.MCD_SUPPORT_FRACTION,
            'mahalanobisCutoff': classifier_defaults.MCD_MAHALANOBIS_CUTOFF,
            'inlierCount': inliers,
        }

    def classify(self, training: TrainingOutput) -> ClassificationResult:
        self.training = training
        grays = self._gray_rois(training)
        stack = np.stack(grays, axis=0)
        n = stack.shape[0]
        self.logger.info(f"🧩 Template: ROI {self.roi_size[0]}x{self.roi_size[1]}, {n} échantillons")

        # Médiane haute, comme un nth_element sur n // 2
        median_img = np.partition(stack, n // 2, axis=0)[n // 2].astype(np.uint8)
        self.sub_rect = self._find_logo_region(stack)
        x, y, w, h = self.sub_rect
        self.template = median_img[y:y + h, x:x + w].copy()
        self.logger.info(f"Template: sous-ROI logo={x},{y} {w}x{h}")

        scores = [self._ncc(g) for g in grays]
        if self.config.template_threshold <= 0.0:
            self.threshold, self.largest_gap = largest_gap_threshold(scores)
            self.logger.info(f"Template: seuil NCC auto={self.threshold:.4f} "
                             f"(plus grand écart={self.largest_gap:.4f})")
        else:
            self.threshold = self.config.template_threshold

        self.mcd = self._robust_covariance(training.projection)

        has_logo = [s >= self.threshold for s in scores]
        logo_count = sum(has_logo)
        self.logger.info(f"Template: logo={logo_count}, sans logo={n - logo_count}, "
                         f"seuil NCC={self.threshold:.4f}")
        return self._binary_result(has_logo, scores=scores, details={'mcd': self.mcd})

    def has_logo(self, frame: np.ndarray) -> bool:
        roi = extract_corner_roi(frame, self.config.roi_width_pct, self.config.corner_index)
        return self._ncc(self._prepare(roi)) >= self.threshold

    def detection_params(self) -> Dict[str, Any]:
        x, y, w, h = self.sub_rect
        tokayo: Dict[str, Any] = {'method': 'pixel-median + NCC'}
        if self.template is not None:
            tokayo['nccThreshold'] = self.threshold
            tokayo['logoSubRect'] = {'x': x, 'y': y, 'w': w, 'h': h}
        else:
            tokayo['nccThreshold'] = None
            tokayo['logoSubRect'] = None
        tokayo['mcd'] = self.mcd
        return {'strategy': self.json_strategy, 'tokayo': tokayo}


CLASSIFIERS = {
    DistanceClassifier.name: DistanceClassifier,
    DbscanClassifier.name: DbscanClassifier,
    LofClassifier.name: LofClassifier,
    KnnClassifier.name: KnnClassifier,
    TemplateClassifier.name: TemplateClassifier,
}


def build_classifier(config: DetectorConfig) -> LogoClassifier:
    """Instancie la stratégie demandée par la configuration."""
    try:
        cls = CLASSIFIERS[config.strategy]
    except KeyError:
        raise ConfigurationError(f"stratégie inconnue: {config.strategy}")
    return cls(config)
