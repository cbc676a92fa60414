#!/usr/bin/env python3

"""
Lecture et analyse des playlists HLS (m3u8).
"""

import bisect
import logging
from pathlib import Path
from typing import List, Optional

import requests

from .config import default_config
from .data_models import Segment
from .exceptions import SourceUnavailableError
from .utils import epoch_ms_to_iso8601_utc, is_http_locator, parse_program_date_time


logger = logging.getLogger(__name__)

EXTINF_TAG = '#EXTINF:'
PDT_TAG = '#EXT-X-PROGRAM-DATE-TIME:'


class Playlist:
    """Segments ordonnés d'une playlist HLS avec leur ancrage horaire."""

    def __init__(self, segments: List[Segment]):
        self.segments = segments
        self.total_duration_sec = segments[-1].end_offset_sec if segments else 0.0
        self._starts = [s.start_offset_sec for s in segments]
        self._ends = [s.end_offset_sec for s in segments]
        self._epochs_ms = self._compute_anchors(segments)

    @staticmethod
    def _compute_anchors(segments: List[Segment]) -> List[Optional[int]]:
        """Epoch de début de chaque segment, extrapolé depuis le dernier tag PDT connu."""
        anchors: List[Optional[int]] = []
        previous_epoch: Optional[int] = None
        previous_duration = 0.0
        for seg in segments:
            epoch = parse_program_date_time(seg.program_date_time) if seg.program_date_time else None
            if epoch is None and previous_epoch is not None:
                epoch = previous_epoch + int(previous_duration * 1000)
            anchors.append(epoch)
            previous_epoch = epoch
            previous_duration = seg.duration_sec
        return anchors

    @property
    def has_program_date_time(self) -> bool:
        return any(e is not None for e in self._epochs_ms)

    def segment_index_at(self, offset_sec: float) -> int:
        """Index du segment tel que start <= offset < end (le dernier pour la fin)."""
        idx = bisect.bisect_right(self._ends, offset_sec)
        return min(idx, len(self.segments) - 1)

    def offset_to_epoch_ms(self, offset_sec: float) -> Optional[int]:
        if not self.segments or offset_sec < 0.0:
            return None
        offset = min(offset_sec, self.total_duration_sec)
        idx = self.segment_index_at(offset)
        epoch = self._epochs_ms[idx]
        if epoch is None:
            return None
        within = max(0.0, offset - self._starts[idx])
        return epoch + int(within * 1000)

    def offset_to_program_date_time(self, offset_sec: float) -> Optional[str]:
        """
        Convertit un offset de la playlist en horodatage absolu.

        Args:
            offset_sec: Offset en secondes depuis le début de la playlist

        Returns:
            Chaîne YYYY-MM-DDTHH:MM:SS.mmm+0000, ou None sans ancrage horaire
        """
        epoch = self.offset_to_epoch_ms(offset_sec)
        if epoch is None:
            return None
        return epoch_ms_to_iso8601_utc(epoch)

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return f"Playlist(segments={len(self.segments)}, total={self.total_duration_sec:.1f}s)"


def parse_playlist(text: str) -> Playlist:
    """
    Analyse le texte d'une playlist HLS.

    Args:
        text: Contenu m3u8

    Returns:
        Playlist avec offsets cumulés

    Raises:
        SourceUnavailableError: Aucun segment ou durée totale nulle
    """
    segments: List[Segment] = []
    pending_duration: Optional[float] = None
    current_pdt: Optional[str] = None
    # Devient vrai dès qu'un tag PDT précède une URI : le tag décrit alors le segment suivant
    pdt_before_uri = False
    offset = 0.0

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        if line.startswith(EXTINF_TAG):
            value = line[len(EXTINF_TAG):].split(',', 1)[0].strip()
            try:
                pending_duration = float(value)
            except ValueError:
                logger.debug(f"Durée EXTINF illisible ignorée: {line!r}")
                pending_duration = None
            continue

        if line.startswith(PDT_TAG):
            current_pdt = line[len(PDT_TAG):].strip()
            # Tag placé après l'URI : il décrit le segment précédent
            if (pending_duration is None and not pdt_before_uri
                    and segments and segments[-1].program_date_time is None):
                last = segments[-1]
                segments[-1] = Segment(last.uri, last.duration_sec, last.start_offset_sec,
                                       last.end_offset_sec, current_pdt)
                current_pdt = None
            continue

        if line.startswith('#'):
            continue

        if pending_duration is None:
            continue

        segments.append(Segment(
            uri=line,
            duration_sec=pending_duration,
            start_offset_sec=offset,
            end_offset_sec=offset + pending_duration,
            program_date_time=current_pdt,
        ))
        if current_pdt is not None:
            pdt_before_uri = True
        offset += pending_duration
        pending_duration = None
        current_pdt = None

    if not segments:
        raise SourceUnavailableError("aucun segment trouvé dans la playlist")
    playlist = Playlist(segments)
    if playlist.total_duration_sec <= 0.0:
        raise SourceUnavailableError("durée totale de la playlist nulle")

    logger.debug(f"Playlist analysée: {playlist}")
    return playlist


def load_playlist_text(locator: str, timeout: float = default_config.HTTP_TIMEOUT_SEC) -> str:
    """
    Lit une playlist depuis un fichier local ou une URL http(s).

    Args:
        locator: Chemin local ou URL
        timeout: Timeout HTTP en secondes

    Returns:
        Texte de la playlist

    Raises:
        SourceUnavailableError: Playlist injoignable
    """
    if is_http_locator(locator):
        try:
            response = requests.get(
                locator,
                timeout=timeout,
                allow_redirects=True,
                headers={'User-Agent': default_config.HTTP_USER_AGENT},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise SourceUnavailableError(f"téléchargement de la playlist impossible: {e}") from e
        return response.text

    path = Path(locator)
    try:
        return path.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        raise SourceUnavailableError(f"lecture de la playlist impossible ({locator}): {e}") from e


def load_playlist(locator: str, timeout: float = default_config.HTTP_TIMEOUT_SEC) -> Playlist:
    """Télécharge puis analyse une playlist."""
    logger.info(f"📥 Chargement de la playlist: {locator}")
    playlist = parse_playlist(load_playlist_text(locator, timeout))
    logger.info(f"📋 {len(playlist)} segments, durée totale {playlist.total_duration_sec:.1f}s")
    if not playlist.has_program_date_time:
        logger.warning("⚠️ Aucun tag EXT-X-PROGRAM-DATE-TIME exploitable : horodatages absolus indisponibles")
    return playlist
