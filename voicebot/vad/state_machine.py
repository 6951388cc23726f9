# voicebot/vad/state_machine.py
"""
Hysteresis state machine for energy-based voice activity detection.

Each tick consumes one RMS value and compares it with a threshold that is
fixed for the session. Speech start needs a short run of loud frames, speech
end needs a longer run of quiet frames, so brief noise does not open an
utterance and natural pauses do not cut one short.

    IDLE --(min_speech_frames consecutive rms > threshold)--> SPEAKING
    SPEAKING --(end_silence_frames consecutive rms <= threshold)--> IDLE
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from voicebot.utils.logging import get_logger

logger = get_logger(__name__)


class VadPhase(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


class VadEvent(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


VadHandler = Callable[[VadEvent], None]


@dataclass(frozen=True)
class VadConfig:
    tick_ms: int = 50
    min_speech_ms: int = 250
    end_silence_ms: int = 800
    calibration_ms: int = 1000
    rms_floor: float = 0.02
    threshold_multiplier: float = 3.0

    def __post_init__(self) -> None:
        if self.tick_ms <= 0:
            raise ValueError("tick_ms must be > 0")
        if self.min_speech_ms < 0 or self.end_silence_ms < 0 or self.calibration_ms < 0:
            raise ValueError("VAD durations must be >= 0")

    @property
    def min_speech_frames(self) -> int:
        return max(1, math.ceil(self.min_speech_ms / self.tick_ms))

    @property
    def end_silence_frames(self) -> int:
        return max(1, math.ceil(self.end_silence_ms / self.tick_ms))

    @property
    def tick_seconds(self) -> float:
        return self.tick_ms / 1000.0

    @classmethod
    def from_settings(cls, settings) -> "VadConfig":
        return cls(
            tick_ms=settings.tick_ms,
            min_speech_ms=settings.min_speech_ms,
            end_silence_ms=settings.end_silence_ms,
            calibration_ms=settings.calibration_ms,
            rms_floor=settings.rms_floor,
            threshold_multiplier=settings.threshold_multiplier,
        )


class VadStateMachine:
    def __init__(self, config: VadConfig, threshold: float) -> None:
        self.config = config
        self._threshold = float(threshold)
        self.phase = VadPhase.IDLE
        self.frames_above = 0
        self.frames_below = 0
        self._handlers: Dict[VadEvent, List[VadHandler]] = {e: [] for e in VadEvent}

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def speaking(self) -> bool:
        return self.phase is VadPhase.SPEAKING

    def recalibrate(self, threshold: float) -> None:
        logger.info("[vad] threshold %.4f -> %.4f", self._threshold, threshold)
        self._threshold = float(threshold)

    def on(self, event: VadEvent, handler: VadHandler) -> None:
        self._handlers[event].append(handler)

    def reset(self) -> None:
        self.phase = VadPhase.IDLE
        self.frames_above = 0
        self.frames_below = 0

    def tick(self, rms: float) -> Optional[VadEvent]:
        """
        Apply one energy sample. Returns the event emitted on this tick, if any.
        Handlers run after the new phase and counters are in place.
        """
        event: Optional[VadEvent] = None

        if rms > self._threshold:
            self.frames_above += 1
            self.frames_below = 0
            if self.phase is VadPhase.IDLE and self.frames_above >= self.config.min_speech_frames:
                self.phase = VadPhase.SPEAKING
                self.frames_above = 0
                event = VadEvent.SPEECH_START
        else:
            self.frames_below += 1
            self.frames_above = 0
            if self.phase is VadPhase.SPEAKING and self.frames_below >= self.config.end_silence_frames:
                self.phase = VadPhase.IDLE
                self.frames_below = 0
                event = VadEvent.SPEECH_END

        if event is not None:
            logger.debug("[vad] %s rms=%.4f thr=%.4f", event.value, rms, self._threshold)
            self._emit(event)
        return event

    def _emit(self, event: VadEvent) -> None:
        for handler in list(self._handlers[event]):
            handler(event)
