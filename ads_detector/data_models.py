#!/usr/bin/env python3

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass(frozen=True)
class Segment:
    """Représente un segment média de la playlist HLS."""
    uri: str
    duration_sec: float
    start_offset_sec: float
    end_offset_sec: float
    program_date_time: Optional[str] = None

    def __str__(self) -> str:
        pdt = f", pdt={self.program_date_time}" if self.program_date_time else ""
        return (f"Segment({self.start_offset_sec:.2f}s -> {self.end_offset_sec:.2f}s, "
                f"dur={self.duration_sec:.2f}s{pdt})")


@dataclass
class Sample:
    """Représente un échantillon d'entraînement (une ROI de coin à un instant donné)."""
    index: int
    time_sec: float
    histogram: np.ndarray
    roi: Optional[np.ndarray] = None

    def __str__(self) -> str:
        roi = f", roi={self.roi.shape[1]}x{self.roi.shape[0]}" if self.roi is not None else ""
        return f"Sample(#{self.index}, t={self.time_sec:.1f}s{roi})"


@dataclass
class LogoModel:
    """Représentation entraînée de la présence du logo."""
    corner_index: int
    reference_histogram: np.ndarray
    distance_threshold: float
    seed_sample_indices: List[int] = field(default_factory=list)

    def __str__(self) -> str:
        return (f"LogoModel(corner={self.corner_index}, "
                f"threshold={self.distance_threshold:.4f}, "
                f"seeds={len(self.seed_sample_indices)})")


@dataclass
class TrainingOutput:
    """Résultat complet de l'entraînement, en lecture seule après construction."""
    model: LogoModel
    sample_every_sec: float
    samples: List[Sample]
    histograms: np.ndarray        # N x 512, float32
    projection: np.ndarray        # N x 2, float32
    pca_mean: np.ndarray          # 1 x 512
    pca_eigenvectors: np.ndarray  # 2 x 512
    kmeans_labels: List[int]
    logo_cluster_label: int

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def sample_times(self) -> List[float]:
        return [s.time_sec for s in self.samples]

    def __str__(self) -> str:
        return (f"TrainingOutput(samples={self.sample_count}, "
                f"logoCluster={self.logo_cluster_label}, {self.model})")


@dataclass
class ClassificationResult:
    """Présence du logo par échantillon, produite par une seule stratégie."""
    strategy: str
    has_logo: List[bool]
    enter_absent: List[bool]
    exit_present: List[bool]
    scores: Optional[List[float]] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def logo_count(self) -> int:
        return sum(1 for v in self.has_logo if v)

    def __str__(self) -> str:
        return (f"ClassificationResult({self.strategy}, "
                f"logo={self.logo_count}, no-logo={len(self.has_logo) - self.logo_count})")


@dataclass
class Interval:
    """Représente une fenêtre publicitaire détectée."""
    start_sec: float
    end_sec: float
    start_program_date_time: Optional[str] = None
    end_program_date_time: Optional[str] = None
    refined: bool = False

    @property
    def duration(self) -> float:
        return self.end_sec - self.start_sec

    def __str__(self) -> str:
        refined_marker = " [REFINED]" if self.refined else ""
        return (f"Interval({self.start_sec:.1f}s -> {self.end_sec:.1f}s, "
                f"dur={self.duration:.1f}s{refined_marker})")


@dataclass
class RefinePoint:
    """Point de sondage de l'affinement des bornes."""
    interval_index: int
    is_start_window: bool
    position: int
    time_sec: float


@dataclass
class DetectionResult:
    """Tout ce que l'assembleur sérialise à la fin d'un job."""
    m3u8: str
    total_duration_sec: float
    elapsed_sec: float
    training: TrainingOutput
    classification: ClassificationResult
    ads: List[Interval]

    @property
    def total_ad_duration(self) -> float:
        return sum(ad.duration for ad in self.ads)

    def __str__(self) -> str:
        return (f"DetectionResult(ads={len(self.ads)}, "
                f"ad_dur={self.total_ad_duration / 60:.1f}min, "
                f"analysis_time={self.elapsed_sec:.1f}s)")
