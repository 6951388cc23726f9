# voicebot/memory/store.py

import json
import threading
from pathlib import Path
from typing import Dict, List, Optional

from voicebot.memory.models import ROLES, Turn, now_ms
from voicebot.utils.logging import get_logger

logger = get_logger(__name__)

MAX_TURNS_PER_USER = 100


class HistoryStore:
    """
    Per-user rolling conversation history backed by one JSON file.

    The whole file is rewritten after every change. Each user keeps at most
    max_turns entries (oldest dropped first). A lock serialises access, since
    FastAPI runs sync handlers on a thread pool.
    """

    def __init__(
        self,
        path: str,
        max_turns: int = MAX_TURNS_PER_USER,
        legacy_path: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        self.max_turns = max_turns
        self.legacy_path = Path(legacy_path) if legacy_path else None
        self._lock = threading.Lock()
        self._db: Dict[str, List[Turn]] = self._load()

    def _read(self, path: Path) -> Dict[str, List[Turn]]:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"expected an object at top level of {path}")
        return {
            str(user_id): [Turn.from_dict(t) for t in turns if isinstance(t, dict)]
            for user_id, turns in raw.items()
            if isinstance(turns, list)
        }

    def _load(self) -> Dict[str, List[Turn]]:
        try:
            if self.path.exists():
                return self._read(self.path)

            # One-time migration from a project-local file
            if self.legacy_path is not None and self.legacy_path.exists():
                db = self._read(self.legacy_path)
                logger.info("[history] migrating %s -> %s", self.legacy_path, self.path)
                self._save(db)
                return db
        except (OSError, ValueError) as e:
            logger.error("[history] failed to load %s, starting empty: %s", self.path, e)
        return {}

    def _save(self, db: Dict[str, List[Turn]]) -> None:
        payload = {user_id: [t.to_dict() for t in turns] for user_id, turns in db.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            logger.error("[history] failed to save database: %s", e)

    def get_history(self, user_id: str, limit: Optional[int] = 20) -> List[Turn]:
        with self._lock:
            turns = list(self._db.get(user_id, []))
        return turns[-limit:] if limit else turns

    def append_turn(self, user_id: str, role: str, content: str) -> Turn:
        if role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {role!r}")
        turn = Turn(role=role, content=content, ts=now_ms())
        with self._lock:
            turns = self._db.setdefault(user_id, [])
            turns.append(turn)
            if len(turns) > self.max_turns:
                self._db[user_id] = turns[-self.max_turns:]
            self._save(self._db)
        return turn

    def clear_user(self, user_id: str) -> None:
        with self._lock:
            self._db.pop(user_id, None)
            self._save(self._db)
