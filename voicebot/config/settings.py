# voicebot/config/settings.py

from dataclasses import dataclass
import os
from pathlib import Path

from dotenv import load_dotenv

from voicebot.errors import ConfigurationError

# Expose BASE_DIR for other modules
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_PROMPTS_DIR = BASE_DIR / "prompts"
DEFAULT_HISTORY_PATH = BASE_DIR / "data" / "memory.json"


@dataclass
class Settings:
    # Upstream credentials (both required)
    openai_api_key: str
    deepgram_api_key: str

    # HTTP listener
    port: int = 3000

    # Chat model
    openai_model: str = "gpt-4o-mini"

    # Deepgram voice used for replies and greetings
    deepgram_tts_model: str = "aura-asteria-en"

    # Storage
    history_path: str = str(DEFAULT_HISTORY_PATH)
    prompts_dir: str = str(DEFAULT_PROMPTS_DIR)

    # Upstream request timeout (seconds)
    http_timeout_seconds: float = 60.0


@dataclass
class ClientSettings:
    api_base: str = "http://127.0.0.1:3000"

    # VAD tuning
    tick_ms: int = 50
    min_speech_ms: int = 250
    end_silence_ms: int = 800
    calibration_ms: int = 1000
    rms_floor: float = 0.02
    threshold_multiplier: float = 3.0


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    # zero or negative falls back to the default
    return value if value > 0 else default


def _parse_int_env(name: str, default: int, min_val: int = 0, max_val: int = 65535) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_val, min(max_val, value))


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(f"Missing {name} in .env or environment")
    return value


def load_settings() -> Settings:
    """
    Load server configuration from environment variables (and defaults).
    Raises ConfigurationError if a required credential is missing.
    Also ensures the history directory exists.
    """
    # --- Required credentials ---
    openai_api_key = _require_env("OPENAI_API_KEY")
    deepgram_api_key = _require_env("DEEPGRAM_API_KEY")

    port = _parse_int_env("PORT", 3000, min_val=1, max_val=65535)

    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
    deepgram_tts_model = (
        os.getenv("DEEPGRAM_TTS_MODEL", "aura-asteria-en").strip() or "aura-asteria-en"
    )

    history_path = Path(
        os.getenv("VOICEBOT_HISTORY_PATH", "").strip() or str(DEFAULT_HISTORY_PATH)
    )
    history_path.parent.mkdir(parents=True, exist_ok=True)

    prompts_dir = os.getenv("VOICEBOT_PROMPTS_DIR", "").strip() or str(DEFAULT_PROMPTS_DIR)

    timeout_seconds = _parse_float_env("VOICEBOT_HTTP_TIMEOUT_SECONDS", 60.0)

    return Settings(
        openai_api_key=openai_api_key,
        deepgram_api_key=deepgram_api_key,
        port=port,
        openai_model=openai_model,
        deepgram_tts_model=deepgram_tts_model,
        history_path=str(history_path),
        prompts_dir=prompts_dir,
        http_timeout_seconds=timeout_seconds,
    )


def load_client_settings() -> ClientSettings:
    """
    Client-side configuration: server base URL and VAD knobs.
    Nothing here is required; bad values fall back to defaults.
    """
    api_base = os.getenv("VOICEBOT_BASE_URL", "").strip() or "http://127.0.0.1:3000"

    return ClientSettings(
        api_base=api_base,
        tick_ms=_parse_int_env("VOICEBOT_VAD_TICK_MS", 50, min_val=10, max_val=1000),
        min_speech_ms=_parse_int_env("VOICEBOT_VAD_MIN_SPEECH_MS", 250, min_val=0, max_val=10000),
        end_silence_ms=_parse_int_env("VOICEBOT_VAD_END_SILENCE_MS", 800, min_val=0, max_val=10000),
        calibration_ms=_parse_int_env("VOICEBOT_VAD_CALIBRATION_MS", 1000, min_val=0, max_val=30000),
        rms_floor=_parse_float_env("VOICEBOT_VAD_RMS_FLOOR", 0.02),
        threshold_multiplier=_parse_float_env("VOICEBOT_VAD_THRESHOLD_MULTIPLIER", 3.0),
    )
