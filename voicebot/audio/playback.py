# voicebot/audio/playback.py
"""
Reply playback with a stop() that barge-in can rely on.

Playback runs on a sounddevice OutputStream fed from a callback, so start()
returns immediately and the VAD loop keeps ticking. The is_playing flag is
only written on the event loop thread: set by start(), cleared by stop() or
by the stream's finished callback (marshalled back with call_soon_threadsafe).
"""

import asyncio
import io
import threading
import wave
from typing import Optional, Tuple

import numpy as np
import sounddevice as sd
from pydub import AudioSegment

from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

_MIME_TO_FORMAT = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
}


def infer_format(audio_mime: str, audio_bytes: bytes) -> str:
    m = (audio_mime or "").split(";", 1)[0].strip().lower()
    if m in _MIME_TO_FORMAT:
        return _MIME_TO_FORMAT[m]
    # Fallback heuristic
    return "wav" if audio_bytes[:4] == b"RIFF" else "mp3"


def decode_wav_to_float32(audio_bytes: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode PCM WAV bytes -> (mono float32 [-1..1], sample_rate).
    """
    with wave.open(io.BytesIO(audio_bytes), "rb") as wf:
        ch = wf.getnchannels()
        sr = wf.getframerate()
        sw = wf.getsampwidth()
        nframes = wf.getnframes()
        raw = wf.readframes(nframes)

    if sw != 2:
        raise RuntimeError(f"WAV sampwidth={sw} not supported (expected 2 bytes PCM16).")

    x = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if ch > 1:
        x = x.reshape(-1, ch).mean(axis=1)
    return x, int(sr)


def decode_compressed_to_float32(audio_bytes: bytes, fmt: str) -> Tuple[np.ndarray, int]:
    """Decode mp3/ogg/webm through pydub (needs ffmpeg)."""
    seg = AudioSegment.from_file(io.BytesIO(audio_bytes), format=fmt)
    sr = seg.frame_rate
    ch = seg.channels
    samples = np.array(seg.get_array_of_samples(), dtype=np.float32)

    # pydub returns interleaved samples if stereo
    if ch > 1:
        samples = samples.reshape(-1, ch).mean(axis=1)

    maxv = float(1 << (8 * seg.sample_width - 1))
    x = np.clip(samples / maxv, -1.0, 1.0)
    return x.astype(np.float32), int(sr)


def decode_audio(audio_bytes: bytes, audio_mime: str) -> Tuple[np.ndarray, int]:
    fmt = infer_format(audio_mime, audio_bytes)
    if fmt == "wav":
        return decode_wav_to_float32(audio_bytes)
    return decode_compressed_to_float32(audio_bytes, fmt)


class AudioPlayer:
    """
    Non-blocking player. One clip at a time; start() replaces whatever was
    playing. decode() is the slow half (pydub/ffmpeg for MP3) and belongs in
    a worker thread; start() only opens the output stream.
    """

    def __init__(self, device: Optional[int] = None, blocksize: int = 1024) -> None:
        self.device = device
        self.blocksize = blocksize
        self.is_playing = False
        self._stream: Optional[sd.OutputStream] = None
        self._generation = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def decode(self, audio_bytes: bytes, audio_mime: str) -> Tuple[np.ndarray, int]:
        return decode_audio(audio_bytes, audio_mime)

    def start(self, x: np.ndarray, sr: int) -> None:
        if x.size == 0:
            logger.info("[play] empty reply audio; nothing to play")
            return

        self.stop()
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

        self._generation += 1
        generation = self._generation
        pos = 0
        lock = threading.Lock()

        def _callback(outdata, frames, time_info, status) -> None:
            nonlocal pos
            with lock:
                chunk = x[pos: pos + frames]
                pos += frames
            n = chunk.shape[0]
            outdata[:n, 0] = np.clip(chunk, -0.95, 0.95)
            if n < frames:
                outdata[n:, 0] = 0.0
                raise sd.CallbackStop()

        stream = sd.OutputStream(
            samplerate=sr,
            channels=1,
            dtype="float32",
            blocksize=self.blocksize,
            device=self.device,
            callback=_callback,
            finished_callback=lambda: self._finished_from_audio_thread(generation),
        )
        self._stream = stream
        self.is_playing = True
        stream.start()
        logger.info("[play] playing reply audio sr=%d seconds=%.2f", sr, x.size / float(sr))

    def stop(self) -> None:
        """Best-effort stop. Never raises; is_playing is False afterwards."""
        stream, self._stream = self._stream, None
        self._generation += 1
        self.is_playing = False
        if stream is None:
            return
        try:
            stream.abort()
            stream.close()
        except Exception as e:
            logger.debug("[play] stop failed (ignored): %s", e)

    def _finished_from_audio_thread(self, generation: int) -> None:
        if self._loop is not None and not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._on_finished, generation)
                return
            except RuntimeError:
                pass
        self._on_finished(generation)

    def _on_finished(self, generation: int) -> None:
        # A newer start()/stop() owns the flag now.
        if generation != self._generation:
            return
        self.is_playing = False
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except Exception as e:
                logger.debug("[play] close after finish failed (ignored): %s", e)
        logger.debug("[play] playback finished")
