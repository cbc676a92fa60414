#!/usr/bin/env python3

"""
Assemblage et écriture du document JSON de résultat.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .config import DetectorConfig
from .data_models import DetectionResult, Interval
from .utils import ensure_parent_dir, seconds_to_hms


logger = logging.getLogger(__name__)


def annotate_program_date_times(intervals: List[Interval], playlist) -> None:
    """Recalcule les horodatages absolus des bornes finales."""
    for interval in intervals:
        interval.start_program_date_time = playlist.offset_to_program_date_time(interval.start_sec)
        interval.end_program_date_time = playlist.offset_to_program_date_time(interval.end_sec)


def interval_to_dict(interval: Interval) -> Dict[str, Any]:
    return {
        'startOffsetSec': interval.start_sec,
        'startOffsetHms': seconds_to_hms(interval.start_sec),
        'endOffsetSec': interval.end_sec,
        'endOffsetHms': seconds_to_hms(interval.end_sec),
        'startProgramDateTime': interval.start_program_date_time,
        'endProgramDateTime': interval.end_program_date_time,
    }


def build_result_payload(result: DetectionResult, config: DetectorConfig,
                         detection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Construit le document JSON consommé par l'application web.

    Args:
        result: Résultat de la détection
        config: Paramètres du job
        detection: Paramètres de la stratégie (voir LogoClassifier.detection_params)

    Returns:
        Dictionnaire sérialisable
    """
    training = result.training
    detection_block = dict(detection or {'strategy': result.classification.strategy})
    detection_block['enterConsecutive'] = config.enter_consecutive
    detection_block['exitConsecutive'] = config.exit_consecutive

    elapsed_ms = int(result.elapsed_sec * 1000)
    return {
        'm3u8': result.m3u8,
        'totalDurationSec': result.total_duration_sec,
        'process': {
            'elapsedMs': elapsed_ms,
            'elapsedSec': elapsed_ms / 1000.0,
        },
        'training': {
            'sampleEverySec': training.sample_every_sec,
            'sampleCount': training.sample_count,
            'roiWidthPct': config.roi_width_pct,
            'k': config.k,
            'logoCorner': config.corner_name,
            'logoThresholdBhattacharyya': training.model.distance_threshold,
            'detection': detection_block,
        },
        'ads': [interval_to_dict(ad) for ad in result.ads],
        'debug': {
            'enabled': config.debug,
            'logosOutputDir': None,
            'logoSampleCount': len(training.model.seed_sample_indices),
        },
    }


def dumps_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + '\n'


def write_result_json(payload: Dict[str, Any], output_path: str) -> str:
    """
    Écrit le document JSON (dossiers parents créés au besoin).

    Returns:
        Le texte JSON écrit
    """
    text = dumps_payload(payload)
    path = ensure_parent_dir(output_path)
    logger.info(f"💾 Écriture du résultat JSON: {path}")
    path.write_text(text, encoding='utf-8')
    return text
