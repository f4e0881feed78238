import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch):
    """Fresh in-memory persistence and service singletons for every test."""
    from src.sitesmith.infrastructure import conversation_store, state_store
    from src.sitesmith.services import editing, orchestrator, telemetry_sink

    monkeypatch.delenv("SITESMITH_STATE_IMPL", raising=False)
    monkeypatch.setattr(state_store, "_memory_store", state_store.InMemoryKeyValueStore())
    conversation_store.reset_conversation_store()
    orchestrator.reset_orchestrator()
    editing.reset_editing_service()
    telemetry_sink.clear_events()
    yield
    editing.reset_editing_service()
    orchestrator.reset_orchestrator()
    conversation_store.reset_conversation_store()
