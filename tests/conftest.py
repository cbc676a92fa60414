"""Shared test fixtures: synthetic HLS frames with a static corner logo."""

import logging
import threading
from typing import Callable, Iterable, Optional, Set, Tuple

import numpy as np
import pytest

from ads_detector.config import DetectorConfig
from ads_detector.features import corner_rect
from ads_detector.playlist import parse_playlist
from ads_detector.sampler import sample_training_frames
from ads_detector.training import train_logo_model

TOTAL_SEC = 600.0
AD_WINDOWS = ((120.0, 180.0),)
CORNER = 3
ROI_PCT = 0.15
LOGO_OUTER_GRAY = 155
LOGO_INNER_GRAY = 100


def make_playlist_text(segment_count: int = 60, segment_sec: float = 10.0,
                       first_pdt: Optional[str] = "2024-01-01T10:00:00.000Z") -> str:
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", f"#EXT-X-TARGETDURATION:{int(segment_sec)}"]
    for i in range(segment_count):
        if i == 0 and first_pdt:
            lines.append(f"#EXT-X-PROGRAM-DATE-TIME:{first_pdt}")
        lines.append(f"#EXTINF:{segment_sec:.3f},")
        lines.append(f"seg{i:05d}.ts")
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class SyntheticReader:
    def __init__(self, source: "SyntheticFrameSource"):
        self.source = source
        self.closed = False

    def read_at(self, time_sec: float):
        if self.source.fail_at is not None and self.source.fail_at(time_sec):
            raise RuntimeError(f"decoder crashed at {time_sec}")
        if round(time_sec, 6) in self.source.unreadable:
            return None
        return self.source.render(time_sec)

    def close(self) -> None:
        self.closed = True


class SyntheticFrameSource:
    """
    Renders 320x180 frames of black/white noise with a two-tone gray logo in a corner.

    The logo is hidden inside the ad windows [start, end).
    """

    def __init__(self, width: int = 320, height: int = 180, corner_index: int = CORNER,
                 roi_pct: float = ROI_PCT, ad_windows: Iterable[Tuple[float, float]] = AD_WINDOWS,
                 unreadable: Iterable[float] = (), fail_at: Optional[Callable[[float], bool]] = None):
        self.width = width
        self.height = height
        self.corner_index = corner_index
        self.roi_pct = roi_pct
        self.ad_windows = tuple(ad_windows)
        self.unreadable: Set[float] = {round(t, 6) for t in unreadable}
        self.fail_at = fail_at
        self.opened = 0
        self._lock = threading.Lock()

    def logo_visible(self, time_sec: float) -> bool:
        return not any(a <= time_sec < b for a, b in self.ad_windows)

    def render(self, time_sec: float) -> np.ndarray:
        rng = np.random.default_rng(int(round(time_sec * 1000)))
        noise = (rng.integers(0, 2, size=(self.height, self.width)) * 255).astype(np.uint8)
        frame = np.repeat(noise[:, :, None], 3, axis=2)
        if self.logo_visible(time_sec):
            x, y, side, _ = corner_rect(self.width, self.height, self.roi_pct, self.corner_index)
            outer = int(round(side * 0.9))
            off = (side - outer) // 2
            frame[y + off:y + off + outer, x + off:x + off + outer] = LOGO_OUTER_GRAY
            inner = side // 2
            ioff = (side - inner) // 2
            frame[y + ioff:y + ioff + inner, x + ioff:x + ioff + inner] = LOGO_INNER_GRAY
        return frame

    def open(self, locator: str) -> SyntheticReader:
        with self._lock:
            self.opened += 1
        return SyntheticReader(self)


def make_config(**overrides) -> DetectorConfig:
    params = dict(
        m3u8="synthetic.m3u8",
        corner_index=CORNER,
        roi_width_pct=ROI_PCT,
        sample_every_sec=5.0,
        min_ad_sec=30.0,
        threads=2,
        smooth_window=1,
    )
    params.update(overrides)
    return DetectorConfig(**params).validate()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("ads_detector")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def frame_source() -> SyntheticFrameSource:
    return SyntheticFrameSource()


@pytest.fixture
def playlist_loader():
    def load(locator: str, timeout: float):
        return parse_playlist(make_playlist_text())
    return load


@pytest.fixture(scope="session")
def training_output():
    """Trained model over 600 s of synthetic frames with ROI pixels captured."""
    config = make_config(strategy="template")
    samples = sample_training_frames(config, TOTAL_SEC, SyntheticFrameSource())
    return train_logo_model(samples, config)
