# voicebot/clients/deepgram_client.py
#
# Single integration layer for Deepgram speech-to-text and text-to-speech.
# Secrets never appear in logs; payloads are fingerprinted instead.

import hashlib
import time
import uuid
from typing import Optional
from urllib.parse import quote

import requests

from voicebot.errors import UpstreamError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

DEEPGRAM_API_BASE = "https://api.deepgram.com/v1"
STT_QUERY = "model=general&smart_format=true"
TTS_ACCEPT = "audio/mpeg"


def _sha256_hex(b: bytes, max_bytes: int = 1024 * 64) -> str:
    if not b:
        return "sha256(empty)"
    h = hashlib.sha256()
    h.update(b[:max_bytes])
    return h.hexdigest()[:16]


def _extract_transcript(data) -> str:
    try:
        transcript = data["results"]["channels"][0]["alternatives"][0]["transcript"]
    except (KeyError, IndexError, TypeError):
        return ""
    return (transcript or "").strip()


class DeepgramClient:
    def __init__(
        self,
        api_key: str,
        tts_model: str = "aura-asteria-en",
        timeout_sec: float = 60.0,
        api_base: str = DEEPGRAM_API_BASE,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            # Hard fail early: nothing will work without this
            raise UpstreamError("DEEPGRAM_API_KEY is not set")
        self._api_key = api_key
        self.tts_model = tts_model
        self.timeout_sec = timeout_sec
        self.api_base = api_base.rstrip("/")
        self._http = session or requests.Session()
        self._http.headers.update({"User-Agent": "voicebot/server (requests)"})

    def _auth(self) -> dict:
        return {"Authorization": f"Token {self._api_key}"}

    def transcribe(self, audio_bytes: bytes, content_type: str = "audio/webm") -> str:
        req_id = f"stt_{uuid.uuid4().hex[:8]}"
        url = f"{self.api_base}/listen?{STT_QUERY}"
        headers = {**self._auth(), "Content-Type": content_type or "audio/webm"}

        logger.info("[stt] req_id=%s start bytes=%d fp=%s mime=%s",
                    req_id, len(audio_bytes), _sha256_hex(audio_bytes), content_type)
        t0 = time.monotonic()
        try:
            resp = self._http.post(url, headers=headers, data=audio_bytes, timeout=self.timeout_sec)
        except requests.RequestException as e:
            logger.error("[stt] req_id=%s HTTP exception: %s", req_id, e)
            raise UpstreamError(f"Deepgram STT error: {e}") from e

        dt_ms = int((time.monotonic() - t0) * 1000)
        if resp.status_code != 200:
            logger.warning("[stt] req_id=%s non-200 status=%d latency_ms=%d body=%r",
                           req_id, resp.status_code, dt_ms, (resp.text or "")[:400])
            raise UpstreamError(f"Deepgram STT error: {resp.status_code} {resp.text}")

        try:
            transcript = _extract_transcript(resp.json())
        except ValueError as e:
            raise UpstreamError(f"Deepgram STT error: invalid JSON ({e})") from e

        snippet = transcript[:180] + ("..." if len(transcript) > 180 else "")
        logger.info("[stt] req_id=%s OK latency_ms=%d transcript=%r", req_id, dt_ms, snippet)
        return transcript

    def synthesize(self, text: str) -> bytes:
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValueError("Cannot synthesize speech from empty text.")

        req_id = f"tts_{uuid.uuid4().hex[:8]}"
        url = f"{self.api_base}/speak?model={quote(self.tts_model, safe='')}"
        headers = {
            **self._auth(),
            "Content-Type": "application/json",
            "Accept": TTS_ACCEPT,
        }

        t0 = time.monotonic()
        try:
            resp = self._http.post(url, headers=headers, json={"text": cleaned}, timeout=self.timeout_sec)
        except requests.RequestException as e:
            logger.error("[tts] req_id=%s HTTP exception: %s", req_id, e)
            raise UpstreamError(f"Deepgram TTS error: {e}") from e

        dt_ms = int((time.monotonic() - t0) * 1000)
        if resp.status_code != 200:
            logger.warning("[tts] req_id=%s non-200 status=%d latency_ms=%d body=%r",
                           req_id, resp.status_code, dt_ms, (resp.text or "")[:400])
            raise UpstreamError(f"Deepgram TTS error: {resp.status_code} {resp.text}")

        audio_bytes = resp.content or b""
        if not audio_bytes:
            raise UpstreamError("Deepgram TTS error: empty audio response")
        logger.info("[tts] req_id=%s OK latency_ms=%d bytes=%d model=%s text_len=%d",
                    req_id, dt_ms, len(audio_bytes), self.tts_model, len(cleaned))
        return audio_bytes
