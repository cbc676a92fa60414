#!/usr/bin/env python3

"""
Taxonomie des erreurs du détecteur de publicités.
"""


class AdsDetectorError(Exception):
    """Erreur de base du détecteur, toujours fatale pour le job sauf mention contraire."""


class ConfigurationError(AdsDetectorError, ValueError):
    """Paramètres du job invalides (coin manquant, intervalles négatifs, seuils incompatibles)."""


class SourceUnavailableError(AdsDetectorError):
    """Playlist injoignable ou inexploitable (aucun segment, durée nulle)."""


class InsufficientSamplesError(AdsDetectorError):
    """Pas assez d'horodatages ou de frames lisibles pour entraîner le modèle."""


class ModelTrainingError(AdsDetectorError):
    """Le modèle de logo n'a pas pu être construit à partir des échantillons."""


class WorkerDecodeFailure(AdsDetectorError):
    """Une frame isolée est illisible. Récupérée localement par le worker."""

    def __init__(self, time_sec: float, reason: str = "frame illisible"):
        super().__init__(f"{reason} à {time_sec:.2f}s")
        self.time_sec = time_sec


class ParallelPoolFailure(AdsDetectorError):
    """Un worker du pool a levé une exception ; la première est remontée après le join."""

    def __init__(self, phase: str, cause: BaseException):
        super().__init__(f"{phase}: {cause}")
        self.phase = phase
        self.cause = cause
