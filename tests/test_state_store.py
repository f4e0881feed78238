import json

from src.sitesmith.domain.models import Preferences
from src.sitesmith.infrastructure import state_store
from src.sitesmith.infrastructure.state_store import (
    SELECTED_MODEL_KEY,
    USE_TAILWIND_KEY,
    FileKeyValueStore,
    InMemoryKeyValueStore,
    load_preferences,
    save_preferences,
)


def test_file_store_round_trip(tmp_path):
    path = tmp_path / "state.json"
    kv = FileKeyValueStore(str(path))
    kv.set("ai_chats", "[]")
    kv.set("ai_activeChatId", "abc")
    kv.delete("ai_activeChatId")

    reopened = FileKeyValueStore(str(path))
    assert reopened.get("ai_chats") == "[]"
    assert reopened.get("ai_activeChatId") is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"ai_chats": "[]"}


def test_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{broken", encoding="utf-8")
    kv = FileKeyValueStore(str(path))
    assert kv.get("ai_chats") is None


def test_preferences_defaults_and_round_trip():
    kv = InMemoryKeyValueStore()
    assert load_preferences(kv) == Preferences()

    prefs = Preferences(selected_model="groq/llama3-70b-8192", use_tailwind=False, system_prompt="Be bold")
    save_preferences(kv, prefs)
    assert kv.get(USE_TAILWIND_KEY) == "false"
    assert load_preferences(kv) == prefs


def test_preferences_ignore_bad_values():
    kv = InMemoryKeyValueStore({USE_TAILWIND_KEY: "maybe", SELECTED_MODEL_KEY: "   "})
    prefs = load_preferences(kv)
    assert prefs.use_tailwind is True
    assert prefs.selected_model == "gemini-2.5-flash"


def test_state_impl_selects_backend(monkeypatch, tmp_path):
    monkeypatch.setenv("SITESMITH_STATE_IMPL", "file")
    monkeypatch.setenv("SITESMITH_STATE_FILE", str(tmp_path / "s.json"))
    monkeypatch.setattr(state_store, "_file_store", None)
    assert isinstance(state_store.get_state_store(), FileKeyValueStore)
    monkeypatch.setenv("SITESMITH_STATE_IMPL", "memory")
    assert isinstance(state_store.get_state_store(), InMemoryKeyValueStore)
