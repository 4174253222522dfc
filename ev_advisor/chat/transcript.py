from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional

Role = Literal["assistant", "user"]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ThoughtRecord:
    id: str
    thought: str
    observation: Optional[str] = None
    tool: Optional[str] = None
    created_at: Optional[float] = None


@dataclass
class TranscriptEntry:
    id: str
    role: Role
    content: str = ""
    thoughts: List[ThoughtRecord] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    is_streaming: bool = False

    @classmethod
    def user(cls, content: str) -> "TranscriptEntry":
        return cls(id=new_id("user"), role="user", content=content)

    @classmethod
    def assistant_placeholder(cls) -> "TranscriptEntry":
        return cls(id=new_id("assistant"), role="assistant", is_streaming=True)

    def append_text(self, text: str) -> None:
        self.content += text

    def add_thought(self, thought: ThoughtRecord) -> None:
        self.thoughts.append(thought)


class Transcript:
    """Turns in insertion order. At most one entry streams at a time."""

    def __init__(self, entries: Optional[List[TranscriptEntry]] = None):
        self._entries: List[TranscriptEntry] = []
        for entry in entries or []:
            self.append(entry)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> TranscriptEntry:
        return self._entries[index]

    def append(self, entry: TranscriptEntry) -> TranscriptEntry:
        if entry.is_streaming and self.streaming_entry() is not None:
            raise ValueError("another transcript entry is still streaming")
        self._entries.append(entry)
        return entry

    def find(self, entry_id: str) -> Optional[TranscriptEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def streaming_entry(self) -> Optional[TranscriptEntry]:
        for entry in self._entries:
            if entry.is_streaming:
                return entry
        return None

    def clear(self) -> None:
        self._entries.clear()

    def thought_count(self) -> int:
        return sum(len(e.thoughts) for e in self._entries if e.role == "assistant")

    # -----------------------------
    # Persisted history
    # -----------------------------
    def to_history(self) -> List[Dict[str, Any]]:
        # thoughts are not persisted
        return [{"role": e.role, "content": e.content, "createdAt": e.created_at} for e in self._entries]

    @classmethod
    def from_history(cls, raw: Any) -> "Transcript":
        """Rebuild from saved history, skipping anything unusable."""
        if not isinstance(raw, list):
            return cls()

        entries = []
        base = now_ms()
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            content = item.get("content")
            if role not in ("assistant", "user"):
                continue
            if not isinstance(content, str) or not content.strip():
                continue

            created_at = item.get("createdAt")
            if isinstance(created_at, bool) or not isinstance(created_at, (int, float)) or not math.isfinite(created_at):
                created_at = base + index

            entries.append(
                TranscriptEntry(
                    id=f"history-{int(created_at)}-{index}",
                    role=role,
                    content=content,
                    created_at=int(created_at),
                )
            )
        return cls(entries)
