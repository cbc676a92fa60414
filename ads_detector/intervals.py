#!/usr/bin/env python3

"""
Machine à états qui transforme la présence du logo par échantillon en intervalles publicitaires.
"""

import logging
from enum import Enum
from typing import List, Sequence

from .data_models import Interval
from .utils import format_seconds


logger = logging.getLogger(__name__)


class AdState(Enum):
    OUTSIDE_AD = 'outside_ad'
    IN_AD = 'in_ad'


def _keep(start: float, end: float, min_ad_sec: float) -> bool:
    return end > start and (end - start) >= min_ad_sec


def detect_ad_intervals(times: Sequence[float],
                        enter_absent: Sequence[bool],
                        exit_present: Sequence[bool],
                        total_duration_sec: float,
                        min_ad_sec: float,
                        enter_consecutive: int = 1,
                        exit_consecutive: int = 1) -> List[Interval]:
    """
    Parcourt les échantillons dans l'ordre chronologique avec hystérésis.

    Args:
        times: Timestamps des échantillons (croissants)
        enter_absent: Absence franche du logo (déclenche l'entrée en pub)
        exit_present: Présence franche du logo (déclenche la sortie de pub)
        total_duration_sec: Durée totale, utilisée pour clore une pub en fin de flux
        min_ad_sec: Durée minimum d'un intervalle conservé
        enter_consecutive: Nombre d'échantillons absents consécutifs pour entrer
        exit_consecutive: Nombre d'échantillons présents consécutifs pour sortir

    Returns:
        Intervalles détectés, triés par début et disjoints avant affinement
    """
    ads: List[Interval] = []
    state = AdState.OUTSIDE_AD
    ad_start = 0.0
    absent_streak = 0
    present_streak = 0
    candidate_idx = -1

    for i, t in enumerate(times):
        if state is AdState.OUTSIDE_AD:
            if enter_absent[i]:
                if absent_streak == 0:
                    candidate_idx = i
                absent_streak += 1
            else:
                absent_streak = 0
                candidate_idx = -1

            if absent_streak >= enter_consecutive:
                state = AdState.IN_AD
                ad_start = times[max(0, candidate_idx)]
                absent_streak = 0
                present_streak = 0
                candidate_idx = -1
        else:
            if exit_present[i]:
                present_streak += 1
            else:
                present_streak = 0

            if present_streak >= exit_consecutive:
                state = AdState.OUTSIDE_AD
                ad_end = times[max(0, i - exit_consecutive + 1)]
                if _keep(ad_start, ad_end, min_ad_sec):
                    ads.append(Interval(start_sec=ad_start, end_sec=ad_end))
                    logger.info(f"📺 Pub détectée: {format_seconds(ad_start)} -> {format_seconds(ad_end)}")
                else:
                    logger.debug(f"Intervalle trop court ignoré: {ad_start:.1f}s -> {ad_end:.1f}s")
                present_streak = 0

    if state is AdState.IN_AD:
        ad_end = total_duration_sec
        if _keep(ad_start, ad_end, min_ad_sec):
            ads.append(Interval(start_sec=ad_start, end_sec=ad_end))
            logger.info(f"📺 Pub détectée (fin de flux): {format_seconds(ad_start)} -> {format_seconds(ad_end)}")

    return ads
