# voicebot/main.py
"""
Server entrypoint.

Loads settings (missing OPENAI_API_KEY / DEEPGRAM_API_KEY is fatal), wires
the collaborators into a VoicePipeline and serves the FastAPI app with
uvicorn on 0.0.0.0:PORT.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI

from voicebot.api.server import create_app
from voicebot.clients.deepgram_client import DeepgramClient
from voicebot.clients.openai_client import ChatClient
from voicebot.config.settings import BASE_DIR, Settings, load_settings
from voicebot.core.pipeline import VoicePipeline
from voicebot.core.prompts import PromptRegistry
from voicebot.errors import ConfigurationError
from voicebot.memory.store import HistoryStore
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)


def build_pipeline(settings: Settings) -> VoicePipeline:
    speech = DeepgramClient(
        api_key=settings.deepgram_api_key,
        tts_model=settings.deepgram_tts_model,
        timeout_sec=settings.http_timeout_seconds,
    )
    chat = ChatClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_sec=settings.http_timeout_seconds,
    )
    history = HistoryStore(
        settings.history_path,
        legacy_path=str(BASE_DIR / "memory.json"),
    )
    prompts = PromptRegistry(settings.prompts_dir)
    prompts.ensure_defaults()
    return VoicePipeline(speech=speech, chat=chat, history=history, prompts=prompts)


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    return create_app(build_pipeline(settings), settings)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Voicebot relay server.")
    p.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0).")
    p.add_argument("--port", type=int, default=None, help="Port (default: PORT env or 3000).")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    app = build_app(settings)
    port = args.port or settings.port
    logger.info("Voice bot on http://%s:%d", args.host, port)
    uvicorn.run(app, host=args.host, port=port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
