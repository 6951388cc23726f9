# voicebot/vad/calibrator.py

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from voicebot.utils.logging import get_logger
from voicebot.vad.sampler import EnergySampler
from voicebot.vad.state_machine import VadConfig

logger = get_logger(__name__)

DEFAULT_RMS_FLOOR = 0.02
DEFAULT_THRESHOLD_MULTIPLIER = 3.0


@dataclass(frozen=True)
class CalibrationResult:
    threshold: float
    ambient: float
    samples: int


def threshold_from_ambient(
    ambient: float,
    floor: float = DEFAULT_RMS_FLOOR,
    multiplier: float = DEFAULT_THRESHOLD_MULTIPLIER,
) -> float:
    return max(floor, ambient * multiplier)


class ThresholdCalibrator:
    """
    Measures ambient energy once, before detection starts, and derives the
    working threshold from it. The window is bounded by calibration_ms on
    the supplied clock.
    """

    def __init__(
        self,
        config: VadConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.config = config
        self._clock = clock
        self._sleep = sleep or asyncio.sleep

    async def calibrate(self, sampler: EnergySampler) -> CalibrationResult:
        window_s = self.config.calibration_ms / 1000.0
        start = self._clock()
        total = 0.0
        n = 0

        while self._clock() - start < window_s:
            rms = sampler.sample()
            if rms is not None:
                total += rms
                n += 1
            await self._sleep(self.config.tick_seconds)

        if n == 0:
            logger.warning("[calibrate] no samples collected; using floor %.3f", self.config.rms_floor)
            return CalibrationResult(threshold=self.config.rms_floor, ambient=0.0, samples=0)

        ambient = total / n
        threshold = threshold_from_ambient(
            ambient,
            floor=self.config.rms_floor,
            multiplier=self.config.threshold_multiplier,
        )
        logger.info("[calibrate] samples=%d ambient=%.4f threshold=%.4f", n, ambient, threshold)
        return CalibrationResult(threshold=threshold, ambient=ambient, samples=n)
