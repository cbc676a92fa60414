#!/usr/bin/env python3

"""
Stockage des publicités détectées par chaîne, en temps absolu.

Un processus de préchauffage lance le détecteur bloc par bloc et ajoute chaque
intervalle détecté ici ; la timeline de l'éditeur interroge ensuite ce registre.
Le service appelant embarque ce module ; la ligne de commande ne l'utilise pas.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from .utils import parse_program_date_time


def channel_key(hls_url: str) -> str:
    """Clé de chaîne : l'URL sans paramètres de requête."""
    parts = urlsplit(hls_url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


@dataclass
class StoredAd:
    """Publicité en secondes epoch."""
    start_epoch: int
    end_epoch: int
    start_program_date_time: Optional[str] = None
    end_program_date_time: Optional[str] = None

    @property
    def duration(self) -> int:
        return self.end_epoch - self.start_epoch


@dataclass
class ChannelAds:
    """État d'une chaîne : publicités triées et plage déjà analysée."""
    ads: List[StoredAd]
    processed_earliest: Optional[int] = None
    processed_latest: Optional[int] = None


class AdStore:
    """
    Registre partagé des publicités par chaîne.

    Passé explicitement au code appelant ; toutes les opérations sont protégées par un verrou.
    """

    def __init__(self):
        self._channels: Dict[str, ChannelAds] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def register_channel(self, channel: str) -> None:
        with self._lock:
            if channel not in self._channels:
                self._channels[channel] = ChannelAds(ads=[])

    def processed_latest(self, channel: str) -> Optional[int]:
        with self._lock:
            state = self._channels.get(channel)
            return state.processed_latest if state is not None else None

    def append_detection_result(self, channel: str, block_start: int, block_end: int,
                                payload: Dict[str, Any]) -> int:
        """
        Intègre le document JSON d'un job couvrant [block_start, block_end] (secondes epoch).

        Les publicités sans horodatage absolu sont ignorées, les doublons exacts aussi.

        Args:
            channel: Clé de la chaîne (déjà enregistrée)
            block_start: Début du bloc analysé
            block_end: Fin du bloc analysé
            payload: Document produit par build_result_payload

        Returns:
            Nombre de publicités nouvellement ajoutées
        """
        added = 0
        with self._lock:
            state = self._channels.get(channel)
            if state is None:
                self.logger.warning(f"⚠️ Chaîne non enregistrée ignorée: {channel}")
                return 0

            if state.processed_earliest is None or block_start < state.processed_earliest:
                state.processed_earliest = block_start
            if state.processed_latest is None or block_end > state.processed_latest:
                state.processed_latest = block_end

            for item in payload.get('ads', []):
                start_pdt = item.get('startProgramDateTime')
                end_pdt = item.get('endProgramDateTime')
                start_ms = parse_program_date_time(start_pdt) if start_pdt else None
                end_ms = parse_program_date_time(end_pdt) if end_pdt else None
                if start_ms is None or end_ms is None:
                    continue
                start, end = start_ms // 1000, end_ms // 1000
                if any(ad.start_epoch == start and ad.end_epoch == end for ad in state.ads):
                    continue
                state.ads.append(StoredAd(start, end, start_pdt, end_pdt))
                added += 1
            state.ads.sort(key=lambda ad: ad.start_epoch)

        self.logger.debug(f"{channel}: {added} publicités ajoutées (bloc {block_start} -> {block_end})")
        return added

    def find_ads(self, channel: str, start: int, end: int) -> List[StoredAd]:
        """Publicités qui chevauchent [start, end)."""
        with self._lock:
            state = self._channels.get(channel)
            if state is None:
                return []
            return [ad for ad in state.ads if ad.end_epoch > start and ad.start_epoch < end]

    def query_by_m3u8_url(self, m3u8_url: str) -> Optional[Dict[str, Any]]:
        """
        Répond à une URL d'archive startTime/endTime avec les publicités connues, en offsets relatifs.

        Returns:
            Document au format du détecteur, ou None si la plage est invalide
        """
        query = parse_qs(urlsplit(m3u8_url).query)
        try:
            start_time = int(query.get('startTime', ['0'])[0])
            end_time = int(query.get('endTime', ['0'])[0])
        except ValueError:
            return None
        if not start_time or not end_time or end_time <= start_time:
            return None

        span = end_time - start_time
        ads = self.find_ads(channel_key(m3u8_url), start_time, end_time)
        return {
            'm3u8': m3u8_url,
            'totalDurationSec': span,
            'ads': [{
                'startOffsetSec': max(0, ad.start_epoch - start_time),
                'endOffsetSec': min(span, ad.end_epoch - start_time),
                'startProgramDateTime': ad.start_program_date_time,
                'endProgramDateTime': ad.end_program_date_time,
            } for ad in ads],
        }

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            channels = [
                {
                    'channel': name,
                    'adsCount': len(state.ads),
                    'earliest': state.processed_earliest,
                    'latest': state.processed_latest,
                }
                for name, state in self._channels.items()
                if state.processed_earliest is not None
            ]
        return {'channels': channels, 'totalAds': sum(c['adsCount'] for c in channels)}
