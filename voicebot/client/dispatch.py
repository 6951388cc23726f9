# voicebot/client/dispatch.py
"""
Client side of the remote processing pipeline.

    utterance -> POST /api/voice -> transcript + reply + audio -> speakers

PipelineClient is the blocking HTTP layer (requests). DispatchController
runs it in a worker thread so the VAD tick loop keeps running while a reply
is in flight, logs the exchange and hands the reply audio to the player.
Reply audio is decoded in a worker thread as well; only the stream start
runs on the loop.

A failed round trip ends that one utterance: it is logged once and never
propagates into the session.
"""

import asyncio
import base64
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from voicebot.audio.recorder import Utterance
from voicebot.errors import PipelineError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 90.0
DEFAULT_GREETING = "Hi, I am your voice assistant. How can I help you today?"


@dataclass
class VoiceReply:
    transcript: str
    reply: str
    audio_base64: str
    audio_mime: str = "audio/mpeg"

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VoiceReply":
        return cls(
            transcript=(data.get("transcript") or "").strip(),
            reply=(data.get("reply") or "").strip(),
            audio_base64=(data.get("audioBase64") or "").strip(),
            audio_mime=(data.get("audioMime") or "audio/mpeg").strip(),
        )


class Player(Protocol):
    is_playing: bool

    def decode(self, audio_bytes: bytes, audio_mime: str) -> Tuple[Any, int]: ...

    def start(self, samples: Any, samplerate: int) -> None: ...

    def stop(self) -> None: ...


def safe_trim_slash(url: str) -> str:
    return url.rstrip("/")


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip() or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return str(data)


class PipelineClient:
    def __init__(
        self,
        api_base: str,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_base = safe_trim_slash(api_base)
        self.timeout_sec = timeout_sec
        self._http = session or requests.Session()
        self._http.headers.update({"User-Agent": "voicebot/live-client (requests)"})

    def health(self) -> Dict[str, Any]:
        resp = self._http.get(f"{self.api_base}/health", timeout=5)
        if resp.status_code != 200:
            raise PipelineError(f"/health returned status {resp.status_code}: {resp.text!r}", resp.status_code)
        return resp.json()

    def list_prompts(self) -> List[str]:
        resp = self._http.get(f"{self.api_base}/api/prompts", timeout=10)
        if resp.status_code != 200:
            raise PipelineError(_error_message(resp), resp.status_code)
        return list(resp.json().get("prompts") or [])

    def post_voice(self, utterance: Utterance, user_id: str, prompt_name: str) -> VoiceReply:
        files = {"audio": (utterance.filename, utterance.data, utterance.mime_type)}
        form = {
            "userId": user_id,
            "promptName": prompt_name,
            "contentType": utterance.mime_type,
        }
        resp = self._http.post(
            f"{self.api_base}/api/voice",
            files=files,
            data=form,
            timeout=self.timeout_sec,
        )
        if resp.status_code != 200:
            raise PipelineError(_error_message(resp), resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise PipelineError(f"Response not valid JSON: {e}. Raw text={resp.text[:200]!r}") from e
        return VoiceReply.from_json(data)

    def fetch_tts(self, text: str) -> Tuple[bytes, str]:
        resp = self._http.get(f"{self.api_base}/api/tts", params={"text": text}, timeout=self.timeout_sec)
        if resp.status_code != 200:
            raise PipelineError(_error_message(resp), resp.status_code)
        data = resp.json()
        audio = base64.b64decode(data.get("audioBase64") or "", validate=True)
        return audio, (data.get("audioMime") or "audio/mpeg")


class DispatchController:
    def __init__(
        self,
        client: PipelineClient,
        player: Player,
        user_id: str = "anonymous",
        prompt_name: str = "default",
    ) -> None:
        self.client = client
        self.player = player
        self.user_id = (user_id or "").strip() or "anonymous"
        self.prompt_name = (prompt_name or "").strip() or "default"

    @property
    def is_playing(self) -> bool:
        return bool(self.player.is_playing)

    def barge_in(self) -> bool:
        """Stop the reply that is playing, if any. Returns True if one was stopped."""
        if not self.player.is_playing:
            return False
        try:
            self.player.stop()
        except Exception as e:
            logger.debug("[dispatch] stop during barge-in failed (ignored): %s", e)
        self.player.is_playing = False
        logger.info("[dispatch] barge-in: playback stopped")
        return True

    async def _play(self, audio_bytes: bytes, audio_mime: str) -> None:
        try:
            # decoding MP3 runs ffmpeg; keep it off the loop
            samples, samplerate = await asyncio.to_thread(self.player.decode, audio_bytes, audio_mime)
            self.player.start(samples, samplerate)
        except Exception as e:
            self.player.is_playing = False
            logger.error("[dispatch] playback failed: %s", e)

    async def dispatch(self, utterance: Utterance) -> Optional[VoiceReply]:
        request_id = str(uuid.uuid4())
        t0 = time.monotonic()
        logger.info(
            "[dispatch] request_id=%s sending bytes=%d mime=%s duration=%.2fs",
            request_id, len(utterance.data), utterance.mime_type, utterance.duration_sec,
        )

        try:
            reply = await asyncio.to_thread(
                self.client.post_voice, utterance, self.user_id, self.prompt_name
            )
        except Exception as e:
            logger.error("[dispatch] request_id=%s send error: %s", request_id, e)
            return None

        latency_ms = int((time.monotonic() - t0) * 1000)
        logger.info("[dispatch] request_id=%s OK latency_ms=%d", request_id, latency_ms)
        if reply.transcript:
            logger.info("You: %s", reply.transcript)
        if reply.reply:
            logger.info("Bot: %s", reply.reply)

        if not reply.audio_base64:
            logger.warning("[dispatch] no audio returned from TTS")
            return reply

        try:
            audio_bytes = base64.b64decode(reply.audio_base64, validate=True)
        except Exception as e:
            logger.error("[dispatch] request_id=%s failed to decode audioBase64: %s", request_id, e)
            return reply

        await self._play(audio_bytes, reply.audio_mime)
        return reply

    async def greet(self, text: str = DEFAULT_GREETING) -> bool:
        try:
            audio_bytes, mime = await asyncio.to_thread(self.client.fetch_tts, text)
        except Exception as e:
            logger.error("[dispatch] greeting TTS failed: %s", e)
            return False
        await self._play(audio_bytes, mime)
        return True
