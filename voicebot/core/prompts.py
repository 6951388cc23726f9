# voicebot/core/prompts.py

import re
from pathlib import Path
from typing import List

from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_NAME = "default"
DEFAULT_TEXT = (
    "You are a concise, helpful voice assistant. Keep answers short, factual, "
    "and follow up with a clarifying question when useful."
)
FALLBACK_TEXT = "You are a helpful assistant."

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_\-]+$")


class PromptRegistry:
    """
    System prompts stored as <name>.txt files in one directory.
    Unknown names fall back to the default prompt.
    """

    def __init__(self, prompts_dir: str) -> None:
        self.prompts_dir = Path(prompts_dir)

    def ensure_defaults(self) -> None:
        try:
            self.prompts_dir.mkdir(parents=True, exist_ok=True)
            p = self.prompts_dir / f"{DEFAULT_NAME}.txt"
            if not p.exists():
                p.write_text(DEFAULT_TEXT, encoding="utf-8")
        except OSError as e:
            logger.warning("[prompts] could not create defaults in %s: %s", self.prompts_dir, e)

    def list_prompts(self) -> List[str]:
        self.ensure_defaults()
        try:
            return sorted(p.stem for p in self.prompts_dir.glob("*.txt") if p.is_file())
        except OSError:
            return []

    def list_files(self) -> List[str]:
        try:
            return sorted(p.name for p in self.prompts_dir.iterdir())
        except OSError:
            return []

    def _read(self, name: str):
        if not _SAFE_NAME.match(name or ""):
            return None
        p = self.prompts_dir / f"{name}.txt"
        if not p.is_file():
            return None
        try:
            return p.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("[prompts] failed to read %s: %s", p, e)
            return None

    def load_prompt(self, name: str = DEFAULT_NAME) -> str:
        self.ensure_defaults()
        text = self._read(name)
        if text is not None:
            return text
        if name != DEFAULT_NAME:
            logger.info("[prompts] unknown prompt %r; using default", name)
        text = self._read(DEFAULT_NAME)
        if text is not None:
            return text
        return FALLBACK_TEXT
