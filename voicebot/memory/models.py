# voicebot/memory/models.py

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict

ROLES = ("user", "assistant")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Turn:
    role: str            # 'user' or 'assistant'
    content: str
    ts: int              # epoch milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Turn":
        return cls(
            role=str(raw.get("role") or ""),
            content=str(raw.get("content") or ""),
            ts=int(raw.get("ts") or 0),
        )
