# voicebot/audio/recorder.py
"""
Per-utterance recording.

The recorder is push-driven: the microphone callback hands it every chunk,
and it keeps them only between start() and stop(). stop() hands back the raw
PCM (or None when nothing was captured, so an empty clip is never sent) and
encode() turns it into one complete container. Encoding can take a while
(pydub runs ffmpeg), so callers run it off the event loop.
"""

from __future__ import annotations

import io
import threading
import wave
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
from pydub import AudioSegment
from pydub.utils import which

from voicebot.errors import CapabilityError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

# Ranked: first supported wins.
ENCODING_CANDIDATES: Tuple[str, ...] = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
    "audio/ogg",
    "audio/wav",
)

# mime -> (pydub export format, codec); None means stdlib wave.
_FFMPEG_FORMATS: Dict[str, Tuple[str, Optional[str]]] = {
    "audio/webm;codecs=opus": ("webm", "libopus"),
    "audio/webm": ("webm", "libopus"),
    "audio/ogg;codecs=opus": ("ogg", "libopus"),
    "audio/ogg": ("ogg", "libvorbis"),
}

_EXTENSIONS = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
}


@dataclass(frozen=True)
class Utterance:
    data: bytes
    mime_type: str
    duration_sec: float

    @property
    def base_mime(self) -> str:
        return self.mime_type.split(";", 1)[0].strip()

    @property
    def filename(self) -> str:
        return "utt" + _EXTENSIONS.get(self.base_mime, ".bin")


def ffmpeg_available() -> bool:
    return which("ffmpeg") is not None


def is_encoding_supported(mime_type: str) -> bool:
    if mime_type == "audio/wav":
        return True
    if mime_type in _FFMPEG_FORMATS:
        return ffmpeg_available()
    return False


def pick_encoding(
    candidates: Iterable[str] = ENCODING_CANDIDATES,
    is_supported: Callable[[str], bool] = is_encoding_supported,
) -> str:
    """
    Return the first supported candidate. Raises CapabilityError when none is,
    so a session can fail before any recording is attempted.
    """
    tried: List[str] = []
    for mime in candidates:
        tried.append(mime)
        try:
            if is_supported(mime):
                return mime
        except Exception as e:
            logger.debug("[recorder] support check failed for %s: %s", mime, e)
    raise CapabilityError(f"No supported recording encoding among: {', '.join(tried)}")


def _to_pcm16(samples: np.ndarray) -> bytes:
    x = np.clip(samples.astype(np.float32), -1.0, 1.0)
    return (x * 32767.0).astype("<i2").tobytes()


def encode_pcm(samples: np.ndarray, samplerate: int, channels: int, mime_type: str) -> bytes:
    """Encode float32 samples (frames x channels, or mono 1-D) as mime_type."""
    pcm = _to_pcm16(samples)

    if mime_type == "audio/wav":
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(channels)
            wf.setsampwidth(2)  # int16
            wf.setframerate(samplerate)
            wf.writeframes(pcm)
        return buf.getvalue()

    if mime_type not in _FFMPEG_FORMATS:
        raise CapabilityError(f"Unsupported recording encoding: {mime_type}")

    fmt, codec = _FFMPEG_FORMATS[mime_type]
    seg = AudioSegment(data=pcm, sample_width=2, frame_rate=samplerate, channels=channels)
    buf = io.BytesIO()
    seg.export(buf, format=fmt, codec=codec)
    return buf.getvalue()


@dataclass(frozen=True)
class RawClip:
    """Captured PCM for one utterance, not yet encoded."""

    samples: np.ndarray
    chunks: int
    duration_sec: float


class UtteranceRecorder:
    def __init__(
        self,
        mime_type: str,
        samplerate: int = 16000,
        channels: int = 1,
        encoder: Callable[[np.ndarray, int, int, str], bytes] = encode_pcm,
    ) -> None:
        self.mime_type = mime_type
        self.samplerate = int(samplerate)
        self.channels = int(channels)
        self._encoder = encoder
        # push() runs on the audio thread
        self._lock = threading.Lock()
        self._chunks: Optional[List[np.ndarray]] = None

    @property
    def recording(self) -> bool:
        return self._chunks is not None

    def start(self) -> None:
        with self._lock:
            if self._chunks is not None:
                logger.warning("[recorder] start() while recording; discarding previous buffer")
            self._chunks = []

    def push(self, chunk: np.ndarray) -> None:
        with self._lock:
            if self._chunks is None or chunk is None or chunk.size == 0:
                return
            self._chunks.append(chunk.copy())

    def stop(self) -> Optional[RawClip]:
        """
        Close the buffer and return the captured audio, or None if nothing
        was captured. Cheap enough for the tick loop; encode() does the rest.
        """
        with self._lock:
            chunks, self._chunks = self._chunks, None

        if not chunks:
            logger.info("[recorder] empty utterance dropped")
            return None

        samples = np.concatenate(chunks, axis=0)
        duration = samples.shape[0] / float(self.samplerate) if self.samplerate > 0 else 0.0
        return RawClip(samples=samples, chunks=len(chunks), duration_sec=duration)

    def encode(self, clip: RawClip) -> Utterance:
        """Encode a clip as one complete container. May shell out to ffmpeg."""
        data = self._encoder(clip.samples, self.samplerate, self.channels, self.mime_type)
        logger.info(
            "[recorder] utterance finalized chunks=%d duration=%.2fs bytes=%d mime=%s",
            clip.chunks, clip.duration_sec, len(data), self.mime_type,
        )
        return Utterance(data=data, mime_type=self.mime_type, duration_sec=clip.duration_sec)

    def abandon(self) -> None:
        with self._lock:
            self._chunks = None
