from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from loguru import logger

FORM_STORAGE_KEY = "ev_requirements_form_v1"
CONVERSATION_STORAGE_KEY = "ev_chat_conversation_id_v1"
USER_STORAGE_KEY = "ev_chat_user_id_v1"
HISTORY_STORAGE_KEY = "ev_chat_history_v1"

FormValue = Union[str, int, float, bool, None]


class Storage(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage:
    """All keys in one JSON document, rewritten on every change."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable state file {}: {}", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._save()


def get_or_create_user_id(storage: Storage) -> str:
    cached = storage.get(USER_STORAGE_KEY)
    if isinstance(cached, str) and cached:
        return cached
    generated = str(uuid.uuid4())
    storage.set(USER_STORAGE_KEY, generated)
    return generated


def read_saved_inputs(storage: Storage) -> Dict[str, FormValue]:
    raw = storage.get(FORM_STORAGE_KEY)
    if not isinstance(raw, dict):
        return {}
    return {
        str(k): v if v is None or isinstance(v, (str, int, float, bool)) else str(v)
        for k, v in raw.items()
    }


def save_inputs(storage: Storage, inputs: Dict[str, FormValue]) -> None:
    storage.set(FORM_STORAGE_KEY, dict(inputs))


def read_conversation_id(storage: Storage) -> str:
    raw = storage.get(CONVERSATION_STORAGE_KEY)
    return raw if isinstance(raw, str) else ""
