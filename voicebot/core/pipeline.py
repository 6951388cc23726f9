# voicebot/core/pipeline.py
"""
Server-side voice pipeline:

    audio -> STT -> (history + system prompt) -> chat model -> TTS

An empty clip or an empty transcript skips the chat model and answers with
a canned fallback, which is still synthesized so the client always gets
something to play.
"""

import base64
from dataclasses import dataclass
from typing import Protocol, Tuple

from voicebot.core.prompts import PromptRegistry
from voicebot.memory.store import HistoryStore
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = "I didn't catch that. Could you try again?"
REPLY_AUDIO_MIME = "audio/mpeg"
CHAT_HISTORY_TURNS = 10


class SpeechClient(Protocol):
    def transcribe(self, audio_bytes: bytes, content_type: str = "audio/webm") -> str: ...

    def synthesize(self, text: str) -> bytes: ...


class LanguageModel(Protocol):
    def reply(self, system_prompt: str, history, user_text: str) -> str: ...


@dataclass
class VoiceReply:
    transcript: str
    reply: str
    audio_base64: str
    audio_mime: str = REPLY_AUDIO_MIME

    def to_json(self) -> dict:
        return {
            "transcript": self.transcript,
            "reply": self.reply,
            "audioBase64": self.audio_base64,
            "audioMime": self.audio_mime,
        }


class VoicePipeline:
    def __init__(
        self,
        speech: SpeechClient,
        chat: LanguageModel,
        history: HistoryStore,
        prompts: PromptRegistry,
    ) -> None:
        self.speech = speech
        self.chat = chat
        self.history = history
        self.prompts = prompts

    def process_utterance(
        self,
        audio_bytes: bytes,
        user_id: str = "anonymous",
        prompt_name: str = "default",
        content_type: str = "audio/webm",
    ) -> VoiceReply:
        if audio_bytes:
            user_text = self.speech.transcribe(audio_bytes, content_type)
        else:
            logger.info("[pipeline] user_id=%s empty clip; skipping STT", user_id)
            user_text = ""

        # History sent to the model excludes the current utterance
        prior = [t.to_message() for t in self.history.get_history(user_id, CHAT_HISTORY_TURNS)]
        if user_text:
            self.history.append_turn(user_id, "user", user_text)

        system_prompt = self.prompts.load_prompt(prompt_name)
        if user_text:
            assistant_text = self.chat.reply(system_prompt, prior, user_text) or FALLBACK_REPLY
        else:
            assistant_text = FALLBACK_REPLY
        self.history.append_turn(user_id, "assistant", assistant_text)

        audio_b64, mime = self.speak(assistant_text)
        return VoiceReply(
            transcript=user_text,
            reply=assistant_text,
            audio_base64=audio_b64,
            audio_mime=mime,
        )

    def speak(self, text: str) -> Tuple[str, str]:
        audio = self.speech.synthesize(text)
        return base64.b64encode(audio).decode("ascii"), REPLY_AUDIO_MIME
