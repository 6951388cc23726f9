# voicebot/utils/logging.py

import logging
import os
from pathlib import Path

# Resolved here rather than via voicebot.config so the client can log
# without loading server settings.
BASE_DIR = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.getenv("VOICEBOT_LOG_DIR", "").strip() or BASE_DIR / "logs")
LOG_FILE = LOG_DIR / "voicebot.log"


def get_logger(name: str = "voicebot") -> logging.Logger:
    """
    Return a logger that logs both to file and console.
    Avoids adding duplicate handlers on repeated imports.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # avoid duplicate handlers

    logger.setLevel(logging.INFO)

    fmt = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File handler (skipped if the log dir is not writable)
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(LOG_FILE, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    except OSError:
        pass

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    logger.addHandler(ch)
    return logger


def set_debug(enabled: bool, prefix: str = "voicebot") -> None:
    """Raise every voicebot logger (and its handlers) to DEBUG, or back to INFO."""
    level = logging.DEBUG if enabled else logging.INFO
    for name, obj in logging.Logger.manager.loggerDict.items():
        if not isinstance(obj, logging.Logger):
            continue
        if name == prefix or name.startswith(prefix + "."):
            obj.setLevel(level)
            for h in obj.handlers:
                h.setLevel(level)
