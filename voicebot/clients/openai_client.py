# voicebot/clients/openai_client.py

import time
import uuid
from typing import Dict, List, Optional

from openai import OpenAI

from voicebot.errors import UpstreamError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
CHAT_TEMPERATURE = 0.3


def _classify_openai_error(e: Exception) -> str:
    name = e.__class__.__name__
    msg = (str(e) or "").lower()

    if "authentication" in name.lower() or "401" in msg or "incorrect api key" in msg:
        return "openai_auth"
    if "ratelimit" in name.lower() or "429" in msg or "rate limit" in msg:
        return "openai_rate_limit"
    if "timeout" in name.lower() or "timed out" in msg:
        return "openai_timeout"
    if "notfound" in name.lower() or "404" in msg:
        return "openai_404_not_found"
    if "connection" in name.lower() or "connection" in msg:
        return "openai_network"
    return "openai_unknown"


class ChatClient:
    """Chat completions with a caller-supplied system prompt and history."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout_sec: float = 60.0,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.model = model
        self._client = client or OpenAI(api_key=api_key, timeout=timeout_sec)

    def build_messages(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_text: str,
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT}]
        for m in history:
            messages.append({"role": m["role"], "content": m["content"]})
        messages.append({"role": "user", "content": user_text})
        return messages

    def reply(self, system_prompt: str, history: List[Dict[str, str]], user_text: str) -> str:
        req_id = f"chat_{uuid.uuid4().hex[:8]}"
        messages = self.build_messages(system_prompt, history, user_text)

        logger.info("[chat] req_id=%s start model=%s msg_count=%d", req_id, self.model, len(messages))
        t0 = time.monotonic()
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=CHAT_TEMPERATURE,
            )
        except Exception as e:
            dt_ms = int((time.monotonic() - t0) * 1000)
            code = _classify_openai_error(e)
            logger.error("[chat] req_id=%s FAIL latency_ms=%d code=%s err=%s", req_id, dt_ms, code, e)
            raise UpstreamError(f"OpenAI error: {e}") from e

        dt_ms = int((time.monotonic() - t0) * 1000)
        try:
            content = resp.choices[0].message.content or ""
        except (AttributeError, IndexError):
            content = ""
        content = content.strip()

        snippet = content[:240] + ("..." if len(content) > 240 else "")
        logger.info("[chat] req_id=%s OK latency_ms=%d model=%s reply=%r", req_id, dt_ms, self.model, snippet)
        return content
