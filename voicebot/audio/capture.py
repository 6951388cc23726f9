# voicebot/audio/capture.py

import threading
from collections import deque
from typing import Callable, List, Optional

import numpy as np
import sounddevice as sd

from voicebot.errors import CapabilityError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SAMPLE_RATE = 16000
DEFAULT_CHANNELS = 1
DEFAULT_FRAME_SIZE = 2048  # analysis window, in samples
DEFAULT_BLOCK_SIZE = 800   # 50 ms @ 16 kHz

ChunkListener = Callable[[np.ndarray], None]


def list_input_devices() -> List[str]:
    lines = []
    for idx, dev in enumerate(sd.query_devices()):
        lines.append(
            f"[{idx}] {dev['name']}  "
            f"(max_input_channels={dev['max_input_channels']}, "
            f"max_output_channels={dev['max_output_channels']})"
        )
    return lines


class MicrophoneSource:
    """
    Live microphone input. The sounddevice callback keeps a rolling window
    of the last frame_size mono samples for energy sampling and forwards
    every chunk to subscribers (the utterance recorder).
    """

    def __init__(
        self,
        samplerate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        frame_size: int = DEFAULT_FRAME_SIZE,
        blocksize: int = DEFAULT_BLOCK_SIZE,
        device: Optional[int] = None,
    ) -> None:
        self.samplerate = int(samplerate)
        self.channels = int(channels)
        self.frame_size = int(frame_size)
        self.blocksize = int(blocksize)
        self.device = device
        self._window: deque = deque(maxlen=self.frame_size)
        self._lock = threading.Lock()
        self._listeners: List[ChunkListener] = []
        self._stream: Optional[sd.InputStream] = None
        self.overflow_count = 0

    @property
    def active(self) -> bool:
        return self._stream is not None

    def subscribe(self, listener: ChunkListener) -> None:
        self._listeners.append(listener)

    def open(self) -> None:
        if self._stream is not None:
            return
        try:
            stream = sd.InputStream(
                samplerate=self.samplerate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.blocksize,
                device=self.device,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            raise CapabilityError(f"Microphone unavailable: {e}") from e
        self._stream = stream
        logger.info(
            "[capture] input open sr=%d ch=%d device=%s", self.samplerate, self.channels, self.device
        )

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("[capture] failed to close input stream: %s", e)
        with self._lock:
            self._window.clear()
        logger.info("[capture] input released")

    def latest_frame(self) -> Optional[np.ndarray]:
        if self._stream is None:
            raise RuntimeError("input stream is not open")
        with self._lock:
            if not self._window:
                return None
            return np.fromiter(self._window, dtype=np.float32, count=len(self._window))

    def _callback(self, indata, frames, time_info, status) -> None:
        if status and status.input_overflow:
            self.overflow_count += 1
        chunk = indata.copy()
        mono = chunk.mean(axis=1) if chunk.ndim > 1 else chunk
        with self._lock:
            self._window.extend(mono.tolist())
        for listener in self._listeners:
            try:
                listener(chunk)
            except Exception as e:
                logger.warning("[capture] chunk listener failed: %s", e)
