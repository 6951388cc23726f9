# voicebot/api/server.py
"""
FastAPI server for the voice relay:

- /api/voice          : multipart audio -> STT -> chat -> TTS
- /api/tts            : ad-hoc speech for greetings
- /api/prompts        : available system prompts
- /api/memory/{id}    : recent history for a user
- /api/memory/clear   : drop a user's history
- /api/debug          : prompt directory listing
- /health             : basic health check

Every error leaves as {"error": "..."} with a non-2xx status.
"""

import time
import uuid
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from voicebot.config.settings import Settings
from voicebot.core.pipeline import VoicePipeline
from voicebot.errors import UpstreamError
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

HISTORY_FETCH_LIMIT = 50


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class ClearMemoryRequest(BaseModel):
    userId: Optional[str] = None


class TurnResponse(BaseModel):
    role: str
    content: str
    ts: int


class HistoryResponse(BaseModel):
    history: List[TurnResponse]


class PromptsResponse(BaseModel):
    prompts: List[str]


class VoiceResponse(BaseModel):
    transcript: str
    reply: str
    audioBase64: str
    audioMime: str = "audio/mpeg"


class TTSResponse(BaseModel):
    audioBase64: str
    audioMime: str = "audio/mpeg"


class OkResponse(BaseModel):
    ok: bool = Field(True)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(pipeline: VoicePipeline, settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(
        title="Voicebot Relay API",
        description="Voice chat relay: STT -> chat model -> TTS, with rolling per-user history.",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.pipeline = pipeline
    app.state.settings = settings

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": f"invalid request: {exc.errors()}"})

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "ok"}

    @app.get("/api/prompts", response_model=PromptsResponse)
    def list_prompts() -> PromptsResponse:
        logger.info("[prompts] listing")
        return PromptsResponse(prompts=pipeline.prompts.list_prompts())

    @app.get("/api/memory/{user_id}", response_model=HistoryResponse)
    def get_memory(user_id: str) -> HistoryResponse:
        turns = pipeline.history.get_history(user_id, HISTORY_FETCH_LIMIT)
        return HistoryResponse(history=[TurnResponse(**t.to_dict()) for t in turns])

    @app.post("/api/memory/clear", response_model=OkResponse)
    def clear_memory(req: Optional[ClearMemoryRequest] = None) -> OkResponse:
        user_id = ((req.userId if req else None) or "").strip()
        if not user_id:
            raise HTTPException(status_code=400, detail="userId required")
        pipeline.history.clear_user(user_id)
        logger.info("[memory] cleared user_id=%s", user_id)
        return OkResponse(ok=True)

    @app.post("/api/voice", response_model=VoiceResponse)
    def voice(
        audio: Optional[UploadFile] = File(default=None),
        userId: Optional[str] = Form(default=None),
        promptName: Optional[str] = Form(default=None),
        contentType: Optional[str] = Form(default=None),
    ) -> VoiceResponse:
        """
        End-to-end voice turn. Returns transcript, reply text and base64 reply audio.
        """
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()

        if audio is None:
            raise HTTPException(status_code=400, detail="audio file missing")

        user_id = (userId or "").strip() or "anonymous"
        prompt_name = (promptName or "").strip() or "default"
        content_type = (contentType or "").strip() or (audio.content_type or "").strip() or "audio/webm"
        audio_bytes = audio.file.read()

        logger.info(
            "[voice] request_id=%s user_id=%s prompt=%s mime=%s bytes=%d",
            request_id, user_id, prompt_name, content_type, len(audio_bytes),
        )

        try:
            result = pipeline.process_utterance(
                audio_bytes,
                user_id=user_id,
                prompt_name=prompt_name,
                content_type=content_type,
            )
        except (UpstreamError, ValueError) as e:
            logger.error("[voice] request_id=%s failed: %s", request_id, e)
            raise HTTPException(status_code=500, detail=str(e))
        except Exception as e:
            logger.exception("[voice] request_id=%s unexpected error", request_id)
            raise HTTPException(status_code=500, detail=str(e) or "Unexpected error in voice pipeline.")

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "[voice] request_id=%s OK latency_ms=%d transcript_len=%d reply_len=%d",
            request_id, latency_ms, len(result.transcript), len(result.reply),
        )
        return VoiceResponse(**result.to_json())

    @app.get("/api/tts", response_model=TTSResponse)
    def tts(text: str = Query("Hello.")) -> TTSResponse:
        try:
            audio_b64, mime = pipeline.speak(text or "Hello.")
        except (UpstreamError, ValueError) as e:
            logger.error("[tts] failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e))
        return TTSResponse(audioBase64=audio_b64, audioMime=mime)

    @app.get("/api/debug")
    def debug() -> dict:
        prompts = pipeline.prompts
        return {
            "ok": True,
            "promptsDir": str(prompts.prompts_dir),
            "files": prompts.list_files(),
            "historyPath": str(pipeline.history.path),
        }

    return app
