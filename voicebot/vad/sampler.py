# voicebot/vad/sampler.py

from typing import Optional, Protocol

import numpy as np

from voicebot.utils.logging import get_logger

logger = get_logger(__name__)


class FrameSource(Protocol):
    def latest_frame(self) -> Optional[np.ndarray]: ...


def compute_rms(frame: np.ndarray) -> float:
    """Root-mean-square of a float frame in [-1, 1]; 0.0 for an empty frame."""
    if frame is None or frame.size == 0:
        return 0.0
    xf = frame.astype(np.float32)
    return float(np.sqrt(np.mean(xf * xf)))


class EnergySampler:
    """
    Reads the current analysis window from the input source and reduces it
    to one RMS value per tick. A missing or failing source skips the tick.
    """

    def __init__(self, source: FrameSource) -> None:
        self.source = source
        self.skipped = 0

    def sample(self) -> Optional[float]:
        try:
            frame = self.source.latest_frame()
        except Exception as e:
            self.skipped += 1
            logger.debug("[sampler] input unavailable, skipping tick: %s", e)
            return None

        if frame is None:
            self.skipped += 1
            return None
        return compute_rms(frame)
