#!/usr/bin/env python3

"""
Accès aux frames du flux HLS via OpenCV.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from .exceptions import SourceUnavailableError, WorkerDecodeFailure


class FrameReader:
    """Session de décodage indépendante, à utiliser par un seul worker."""

    def __init__(self, locator: str):
        self.locator = locator
        self.logger = logging.getLogger(__name__)
        self.cap = cv2.VideoCapture(locator)
        if not self.cap.isOpened():
            raise SourceUnavailableError(f"Impossible d'ouvrir le flux: {locator}")
        # Pas de prélecture : chaque lecture suit immédiatement un seek
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    def read_at(self, time_sec: float) -> Optional[np.ndarray]:
        """
        Récupère la frame la plus proche d'un timestamp.

        Args:
            time_sec: Timestamp en secondes

        Returns:
            Frame BGR ou None si la lecture échoue

        Raises:
            WorkerDecodeFailure: Le décodeur a levé une erreur pour ce timestamp
        """
        try:
            self.cap.set(cv2.CAP_PROP_POS_MSEC, time_sec * 1000.0)
            ret, frame = self.cap.read()
        except cv2.error as e:
            raise WorkerDecodeFailure(time_sec, f"erreur du décodeur ({e})") from e
        if not ret or frame is None or frame.size == 0:
            self.logger.debug(f"Frame illisible à {time_sec:.2f}s")
            return None
        return frame

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OpenCVFrameSource:
    """Fabrique de sessions de décodage OpenCV (une par worker)."""

    def open(self, locator: str) -> FrameReader:
        return FrameReader(locator)
