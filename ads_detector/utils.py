#!/usr/bin/env python3

"""
Utilitaires pour le détecteur de publicités.
"""

import logging
import math
import re
import statistics
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence, Union


_PDT_PATTERN = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})[Tt ](\d{2}):(\d{2}):(\d{2})'
    r'(?:\.(\d+))?'
    r'(?:([Zz])|([+-])(\d{2}):?(\d{2}))?'
)


def seconds_to_hms(seconds: float) -> str:
    """
    Convertit des secondes en format HH:MM:SS.

    Args:
        seconds: Nombre de secondes (peut être flottant)

    Returns:
        Chaîne au format HH:MM:SS
    """
    if not seconds >= 0.0:
        seconds = 0.0
    # arrondi au plus proche, demi-seconde vers le haut
    total_seconds = int(math.floor(seconds + 0.5))
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    secs = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_seconds(seconds: float) -> str:
    """Formate un offset avec sa valeur précise et son équivalent HH:MM:SS."""
    return f"{seconds:.3f}s ({seconds_to_hms(seconds)})"


def format_duration(seconds: float, precision: int = 1) -> str:
    """
    Formate une durée en secondes de manière lisible.

    Args:
        seconds: Durée en secondes
        precision: Nombre de décimales pour les minutes/heures

    Returns:
        Chaîne formatée (ex: "5.2min", "1.3h", "45s")
    """
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds/60:.{precision}f}min"
    else:
        return f"{seconds/3600:.{precision}f}h"


def is_http_locator(locator: str) -> bool:
    return locator.startswith('http://') or locator.startswith('https://')


def parse_program_date_time(value: str) -> Optional[int]:
    """
    Convertit une valeur EXT-X-PROGRAM-DATE-TIME en epoch millisecondes.

    Formats acceptés : YYYY-MM-DDTHH:MM:SS(.mmm)?(Z|+HHMM|-HHMM|+HH:MM|-HH:MM)?
    Sans fuseau, l'heure est considérée UTC.

    Args:
        value: Chaîne brute suivant le tag

    Returns:
        Epoch en millisecondes, ou None si la chaîne est inexploitable
    """
    match = _PDT_PATTERN.match(value.strip())
    if not match:
        return None
    year, month, day, hour, minute, second = (int(g) for g in match.group(1, 2, 3, 4, 5, 6))
    fraction = match.group(7) or ''
    # millisecondes tronquées à 3 chiffres
    ms = int((fraction + '000')[:3]) if fraction else 0
    try:
        base = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None

    offset_sec = 0
    if match.group(9):
        sign = 1 if match.group(9) == '+' else -1
        offset_sec = sign * (int(match.group(10)) * 3600 + int(match.group(11)) * 60)

    epoch_sec = int(base.timestamp()) - offset_sec
    return epoch_sec * 1000 + ms


def epoch_ms_to_iso8601_utc(epoch_ms: int) -> str:
    """Formate un epoch en millisecondes au format YYYY-MM-DDTHH:MM:SS.mmm+0000."""
    seconds, ms = divmod(int(epoch_ms), 1000)
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return f"{dt.strftime('%Y-%m-%dT%H:%M:%S')}.{ms:03d}+0000"


def quantile(values: Sequence[float], q: float) -> float:
    """
    Quantile par rang arrondi (pas d'interpolation).

    Args:
        values: Valeurs (non triées)
        q: Quantile dans [0, 1]

    Returns:
        La valeur de rang round(q * (n - 1)), 0.0 si la liste est vide
    """
    if len(values) == 0:
        return 0.0
    ordered = sorted(values)
    if q <= 0.0:
        return ordered[0]
    if q >= 1.0:
        return ordered[-1]
    idx = int(math.floor(q * (len(ordered) - 1) + 0.5))
    return ordered[idx]


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return statistics.mean(values)


def stddev(values: Sequence[float]) -> float:
    """Écart-type d'échantillon (n - 1), 0.0 en dessous de deux valeurs."""
    if len(values) < 2:
        return 0.0
    return statistics.stdev(values)


def ensure_parent_dir(file_path: Union[str, Path]) -> Path:
    """Crée le dossier parent d'un fichier de sortie si nécessaire."""
    path = Path(file_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure le système de logging.

    Args:
        level: Niveau de logging (DEBUG, INFO, WARNING, ERROR)
        log_file: Chemin optionnel vers un fichier de log

    Returns:
        Logger configuré
    """
    from .config import logging_config

    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(logging_config.LOG_FORMAT)

    logger = logging.getLogger(logging_config.LOGGER_NAME)
    logger.setLevel(log_level)

    # Éviter les doublons si déjà configuré
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(log_level)
        return logger

    # Handler console (stderr : stdout est réservé au JSON)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Impossible de créer le fichier de log {log_file}: {e}")

    return logger


class Timer:
    """Utilitaire pour mesurer le temps d'exécution."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()

    @property
    def elapsed(self) -> float:
        """Temps écoulé en secondes."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    def __str__(self) -> str:
        return f"{self.name}: {format_duration(self.elapsed)}"


class ProgressReporter:
    """Utilitaire pour rapporter la progression d'une opération, appelable depuis plusieurs threads."""

    def __init__(self, total: int, name: str = "Progress", report_frequency: int = 10,
                 logger: Optional[logging.Logger] = None):
        self.total = total
        self.name = name
        self.report_frequency = max(1, report_frequency)
        self.current = 0
        self.start_time = time.time()
        self.logger = logger or logging.getLogger('ads_detector')
        self._lock = threading.Lock()

    def update(self, increment: int = 1) -> None:
        """Met à jour la progression."""
        with self._lock:
            self.current += increment
            current = self.current
        if current % self.report_frequency == 0 or current >= self.total:
            self._report(current)

    def _report(self, current: int) -> None:
        """Rapporte la progression actuelle."""
        if self.total <= 0:
            return
        percentage = (current / self.total) * 100
        elapsed = time.time() - self.start_time
        if current > 0 and elapsed > 0:
            rate = current / elapsed
            eta = (self.total - current) / rate
            self.logger.info(f"{self.name}: {percentage:.1f}% "
                             f"({current}/{self.total}) - "
                             f"ETA: {format_duration(eta)}")
        else:
            self.logger.info(f"{self.name}: {percentage:.1f}% ({current}/{self.total})")
