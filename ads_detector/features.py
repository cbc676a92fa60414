#!/usr/bin/env python3

"""
Extraction des caractéristiques de la ROI du coin logo.
"""

from typing import Tuple

import cv2
import numpy as np

from .config import classifier_defaults, training_config


def corner_rect(width: int, height: int, roi_width_pct: float, corner_index: int) -> Tuple[int, int, int, int]:
    """
    Calcule la ROI carrée d'un coin de l'image.

    Args:
        width: Largeur de la frame
        height: Hauteur de la frame
        roi_width_pct: Côté de la ROI en fraction de la largeur
        corner_index: 0 haut-gauche, 1 haut-droite, 2 bas-gauche, 3 bas-droite

    Returns:
        Tuple (x, y, largeur, hauteur)
    """
    pct = min(max(roi_width_pct, training_config.ROI_PCT_MIN), training_config.ROI_PCT_MAX)
    side = int(round(width * pct))
    side = max(1, min(side, min(width, height)))

    right = corner_index in (1, 3)
    bottom = corner_index in (2, 3)
    x = width - side if right else 0
    y = height - side if bottom else 0
    return x, y, side, side


def extract_corner_roi(frame: np.ndarray, roi_width_pct: float, corner_index: int) -> np.ndarray:
    """Copie la ROI du coin logo depuis une frame BGR."""
    h, w = frame.shape[:2]
    x, y, rw, rh = corner_rect(w, h, roi_width_pct, corner_index)
    return frame[y:y + rh, x:x + rw].copy()


def corner_histogram(roi: np.ndarray) -> np.ndarray:
    """
    Histogramme HSV joint 8x8x8, masqué par un disque centré et normalisé L1.

    Args:
        roi: Pixels BGR de la ROI

    Returns:
        Vecteur float32 de 512 valeurs dont la somme vaut 1
    """
    size = training_config.ROI_DOWNSCALE_SIZE
    small = roi
    if roi.shape[0] > size or roi.shape[1] > size:
        small = cv2.resize(roi, (size, size), interpolation=cv2.INTER_AREA)

    hsv = cv2.cvtColor(small, cv2.COLOR_BGR2HSV)

    h, w = hsv.shape[:2]
    mask = np.zeros((h, w), dtype=np.uint8)
    radius = int(round(training_config.ROI_MASK_RADIUS_RATIO * min(h, w)))
    cv2.circle(mask, (w // 2, h // 2), radius, 255, thickness=-1)

    hist = cv2.calcHist([hsv], [0, 1, 2], mask, list(training_config.HIST_BINS),
                        training_config.HIST_RANGES)
    hist = hist.reshape(-1).astype(np.float32)
    total = float(hist.sum())
    if total > 0.0:
        hist /= total
    return hist


def bhattacharyya_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Distance de Bhattacharyya entre deux histogrammes (0 = identiques, 1 = disjoints)."""
    return float(cv2.compareHist(a.astype(np.float32), b.astype(np.float32),
                                 cv2.HISTCMP_BHATTACHARYYA))


def bhattacharyya_matrix(rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    """
    Distances de Bhattacharyya entre deux ensembles d'histogrammes.

    Même formule que cv2.compareHist, vectorisée.

    Args:
        rows: Matrice N x D
        cols: Matrice M x D

    Returns:
        Matrice N x M de distances
    """
    a = np.asarray(rows, dtype=np.float64)
    b = np.asarray(cols, dtype=np.float64)
    overlap = np.sqrt(a) @ np.sqrt(b).T
    norm = np.sqrt(np.outer(a.sum(axis=1), b.sum(axis=1)))
    with np.errstate(divide='ignore', invalid='ignore'):
        ratio = np.where(norm > 0.0, overlap / norm, 0.0)
    return np.sqrt(np.clip(1.0 - ratio, 0.0, None))


def blurred_gray(roi: np.ndarray) -> np.ndarray:
    """Niveaux de gris lissés (flou gaussien 3x3) utilisés par le mode template."""
    gray = roi if roi.ndim == 2 else cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)
    return cv2.GaussianBlur(gray, classifier_defaults.TEMPLATE_BLUR_KERNEL, 0)
