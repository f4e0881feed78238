from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional, Protocol

from ..domain.models import Preferences

LOG = logging.getLogger("sitesmith.store")

CHATS_KEY = "ai_chats"
ACTIVE_CHAT_KEY = "ai_activeChatId"
USE_TAILWIND_KEY = "ai_useTailwind"
SYSTEM_PROMPT_KEY = "ai_systemPrompt"
USE_GOOGLE_SEARCH_KEY = "ai_useGoogleSearch"
SELECTED_MODEL_KEY = "ai_selectedModel"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileKeyValueStore:
    """JSON file-backed key-value store for development persistence.

    Structure: a single JSON object mapping key -> string value.
    Thread-safe with a coarse RLock; suitable for a single process.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        self._lock = RLock()
        # Default to run/state.json at repo root
        root = Path(__file__).resolve().parents[3]
        default_path = root / "run" / "state.json"
        self._path = Path(file_path or os.getenv("SITESMITH_STATE_FILE", str(default_path)))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, str] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        try:
            if self._path.exists():
                data = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    self._data = {str(k): v for k, v in data.items() if isinstance(v, str)}
        except Exception as exc:
            # Unreadable file: start clean rather than block startup
            LOG.warning("state_file_unreadable", extra={"path": str(self._path), "err": str(exc)})
            self._data = {}

    def _save(self) -> None:
        try:
            self._path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        except Exception as exc:
            LOG.warning("state_file_save_failed", extra={"path": str(self._path), "err": str(exc)})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._save()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._save()


def _read_json(store: KeyValueStore, key: str) -> Any:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        LOG.warning("state_value_unreadable", extra={"key": key})
        return None


def load_preferences(store: KeyValueStore) -> Preferences:
    prefs = Preferences()
    use_tailwind = _read_json(store, USE_TAILWIND_KEY)
    if isinstance(use_tailwind, bool):
        prefs.use_tailwind = use_tailwind
    use_search = _read_json(store, USE_GOOGLE_SEARCH_KEY)
    if isinstance(use_search, bool):
        prefs.use_google_search = use_search
    system_prompt = store.get(SYSTEM_PROMPT_KEY)
    if system_prompt is not None:
        prefs.system_prompt = system_prompt
    model = store.get(SELECTED_MODEL_KEY)
    if model and model.strip():
        prefs.selected_model = model.strip()
    return prefs


def save_preferences(store: KeyValueStore, prefs: Preferences) -> None:
    try:
        store.set(USE_TAILWIND_KEY, json.dumps(prefs.use_tailwind))
        store.set(USE_GOOGLE_SEARCH_KEY, json.dumps(prefs.use_google_search))
        store.set(SYSTEM_PROMPT_KEY, prefs.system_prompt)
        store.set(SELECTED_MODEL_KEY, prefs.selected_model)
    except Exception as exc:
        LOG.warning("preferences_save_failed", extra={"err": str(exc)})


_memory_store: KeyValueStore = InMemoryKeyValueStore()
_file_store: KeyValueStore | None = None


def get_state_store() -> KeyValueStore:
    global _file_store
    impl = os.getenv("SITESMITH_STATE_IMPL", "memory").lower()
    if impl == "file":
        if _file_store is None:
            _file_store = FileKeyValueStore()
        return _file_store
    return _memory_store
