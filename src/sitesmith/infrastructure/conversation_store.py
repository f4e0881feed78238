"""Conversations, their message logs and their snapshot histories.

All mutation goes through one ``InMemoryConversationStore`` guarded by a
single re-entrant lock, so user actions and orchestrator folds are applied
one at a time in submission order.

The store also owns the live overlay: uncommitted file edits for the active
conversation. The overlay is bound to the snapshot version it was made on
and is dropped whenever the cursor moves, a snapshot is pushed, or another
conversation becomes active.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ..core.history import Snapshot, SnapshotHistory
from ..domain.models import (
    AgentPlan,
    Conversation,
    ConversationSummary,
    GroundingChunk,
    Message,
    ProjectFile,
    new_id,
)
from ..errors import ConversationNotFound, InvalidConversationName, LastConversationError
from .state_store import ACTIVE_CHAT_KEY, CHATS_KEY, KeyValueStore, get_state_store

LOG = logging.getLogger("sitesmith.store")

DEFAULT_CONVERSATION_NAME = "Untitled Chat"


class ConversationStore(Protocol):
    def create(self, name: Optional[str] = None) -> Conversation: ...

    def select(self, conversation_id: str) -> bool: ...

    def rename(self, conversation_id: str, name: str) -> Conversation: ...

    def delete(self, conversation_id: str) -> None: ...

    def list(self) -> List[ConversationSummary]: ...

    def get(self, conversation_id: str) -> Optional[Conversation]: ...

    def active(self) -> Optional[Conversation]: ...

    def append_messages(self, conversation_id: str, *messages: Message) -> None: ...

    def push_snapshot(self, files: Iterable[ProjectFile], conversation_id: Optional[str] = None) -> Snapshot: ...

    def undo(self, conversation_id: Optional[str] = None) -> bool: ...

    def redo(self, conversation_id: Optional[str] = None) -> bool: ...


@dataclass
class _Conversation:
    conversation_id: str
    name: str
    created_at: str
    messages: List[Message] = field(default_factory=list)
    history: SnapshotHistory = field(default_factory=SnapshotHistory)


@dataclass
class _Overlay:
    conversation_id: str
    snapshot_version: int
    revision: int
    files: List[ProjectFile]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class InMemoryConversationStore:
    def __init__(self, state_store: Optional[KeyValueStore] = None) -> None:
        self._conversations: Dict[str, _Conversation] = {}
        self._active_id: Optional[str] = None
        self._overlay: Optional[_Overlay] = None
        self._overlay_revision = 0
        self._state_store = state_store
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require(self, conversation_id: Optional[str]) -> _Conversation:
        cid = conversation_id or self._active_id
        conv = self._conversations.get(cid) if cid else None
        if conv is None:
            raise ConversationNotFound(str(cid))
        return conv

    def _view(self, conv: _Conversation) -> Conversation:
        snapshot = conv.history.current()
        overlay = self._overlay if self._overlay and self._overlay.conversation_id == conv.conversation_id else None
        files = overlay.files if overlay else list(snapshot.files)
        return Conversation(
            id=conv.conversation_id,
            name=conv.name,
            created_at=conv.created_at,
            messages=[m.model_copy(deep=True) for m in conv.messages],
            files=list(files),
            history_length=len(conv.history),
            history_index=conv.history.cursor,
            snapshot_version=snapshot.version,
            has_overlay=overlay is not None,
            can_undo=conv.history.can_undo,
            can_redo=conv.history.can_redo,
        )

    def _clear_overlay_for(self, conversation_id: str) -> None:
        if self._overlay and self._overlay.conversation_id == conversation_id:
            self._overlay = None

    def _persist(self) -> None:
        if self._state_store is None:
            return
        try:
            state = self.export_state()
            self._state_store.set(CHATS_KEY, json.dumps(state["conversations"]))
            if state["active_id"]:
                self._state_store.set(ACTIVE_CHAT_KEY, state["active_id"])
        except Exception as exc:
            LOG.warning("conversation_state_save_failed", extra={"err": str(exc)})

    def _find_message(self, conv: _Conversation, message_id: str) -> Optional[Message]:
        for message in conv.messages:
            if message.id == message_id:
                return message
        return None

    def _enforce_single_streaming(self, conv: _Conversation, incoming: Iterable[Message]) -> None:
        if not any(m.is_streaming for m in incoming):
            return
        for message in conv.messages:
            if message.is_streaming:
                LOG.warning(
                    "streaming_message_superseded",
                    extra={"conversation_id": conv.conversation_id, "message_id": message.id},
                )
                message.is_streaming = False
                message.is_thinking = False

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    def create(self, name: Optional[str] = None) -> Conversation:
        with self._lock:
            conv = _Conversation(
                conversation_id=new_id(),
                name=(name or "").strip() or DEFAULT_CONVERSATION_NAME,
                created_at=_now_iso(),
            )
            self._conversations[conv.conversation_id] = conv
            if self._active_id is not None:
                self._clear_overlay_for(self._active_id)
            self._active_id = conv.conversation_id
            self._persist()
            return self._view(conv)

    def select(self, conversation_id: str) -> bool:
        with self._lock:
            if conversation_id not in self._conversations:
                return False
            if conversation_id != self._active_id:
                self._overlay = None
                self._active_id = conversation_id
                self._persist()
            return True

    def rename(self, conversation_id: str, name: str) -> Conversation:
        trimmed = (name or "").strip()
        if not trimmed:
            raise InvalidConversationName()
        with self._lock:
            conv = self._require(conversation_id)
            conv.name = trimmed
            self._persist()
            return self._view(conv)

    def delete(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id not in self._conversations:
                raise ConversationNotFound(conversation_id)
            if len(self._conversations) <= 1:
                raise LastConversationError()
            del self._conversations[conversation_id]
            if self._active_id == conversation_id:
                self._overlay = None
                self._active_id = next(iter(self._conversations))
            self._persist()

    def list(self) -> List[ConversationSummary]:
        with self._lock:
            return [
                ConversationSummary(
                    id=conv.conversation_id,
                    name=conv.name,
                    created_at=conv.created_at,
                    message_count=len(conv.messages),
                    active=conv.conversation_id == self._active_id,
                )
                for conv in self._conversations.values()
            ]

    def count(self) -> int:
        with self._lock:
            return len(self._conversations)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(conversation_id)
            return self._view(conv) if conv else None

    def active(self) -> Optional[Conversation]:
        with self._lock:
            if self._active_id is None:
                return None
            return self._view(self._conversations[self._active_id])

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def list_messages(self, conversation_id: Optional[str] = None) -> List[Message]:
        with self._lock:
            conv = self._require(conversation_id)
            return [m.model_copy(deep=True) for m in conv.messages]

    def append_messages(self, conversation_id: str, *messages: Message) -> None:
        with self._lock:
            conv = self._require(conversation_id)
            self._enforce_single_streaming(conv, messages)
            conv.messages.extend(m.model_copy(deep=True) for m in messages)
            self._persist()

    def replace_messages(self, conversation_id: str, messages: Iterable[Message]) -> None:
        with self._lock:
            conv = self._require(conversation_id)
            incoming = [m.model_copy(deep=True) for m in messages]
            streaming = [m for m in incoming if m.is_streaming]
            for message in streaming[:-1]:
                message.is_streaming = False
                message.is_thinking = False
            conv.messages = incoming
            self._persist()

    def set_plan(self, conversation_id: str, message_id: str, plan: AgentPlan) -> bool:
        with self._lock:
            conv = self._require(conversation_id)
            message = self._find_message(conv, message_id)
            if message is None:
                return False
            message.plan = plan.model_copy(deep=True)
            return True

    def finish_streaming(
        self,
        conversation_id: str,
        message_id: str,
        *,
        content: str,
        files: Optional[List[ProjectFile]] = None,
        grounding_metadata: Optional[List[GroundingChunk]] = None,
    ) -> Optional[Message]:
        """Overwrite the in-flight model message in place and clear its flags."""
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                LOG.warning("finish_streaming_conversation_gone", extra={"conversation_id": conversation_id})
                return None
            message = self._find_message(conv, message_id)
            if message is None:
                LOG.warning("finish_streaming_message_gone", extra={"message_id": message_id})
                return None
            message.content = content
            message.files = [f.model_copy() for f in files] if files else None
            message.grounding_metadata = list(grounding_metadata) if grounding_metadata else None
            message.is_thinking = False
            message.is_streaming = False
            self._persist()
            return message.model_copy(deep=True)

    def streaming_messages(self, conversation_id: Optional[str] = None) -> List[Message]:
        with self._lock:
            conv = self._require(conversation_id)
            return [m.model_copy(deep=True) for m in conv.messages if m.is_streaming]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def push_snapshot(self, files: Iterable[ProjectFile], conversation_id: Optional[str] = None) -> Snapshot:
        with self._lock:
            conv = self._require(conversation_id)
            snapshot = conv.history.push(files)
            self._clear_overlay_for(conv.conversation_id)
            self._persist()
            return snapshot

    def undo(self, conversation_id: Optional[str] = None) -> bool:
        with self._lock:
            conv = self._require(conversation_id)
            # The overlay is dropped even when the cursor cannot move.
            self._clear_overlay_for(conv.conversation_id)
            moved = conv.history.undo()
            if moved:
                self._persist()
            return moved

    def redo(self, conversation_id: Optional[str] = None) -> bool:
        with self._lock:
            conv = self._require(conversation_id)
            self._clear_overlay_for(conv.conversation_id)
            moved = conv.history.redo()
            if moved:
                self._persist()
            return moved

    def current_snapshot(self, conversation_id: Optional[str] = None) -> Snapshot:
        with self._lock:
            return self._require(conversation_id).history.current()

    def history_state(self, conversation_id: Optional[str] = None) -> SnapshotHistory:
        """A detached copy of the conversation's history."""
        with self._lock:
            history = self._require(conversation_id).history
            return SnapshotHistory(history.snapshots, history.cursor)

    # ------------------------------------------------------------------
    # Live overlay
    # ------------------------------------------------------------------
    def effective_files(self, conversation_id: Optional[str] = None) -> List[ProjectFile]:
        with self._lock:
            conv = self._require(conversation_id)
            if self._overlay and self._overlay.conversation_id == conv.conversation_id:
                return list(self._overlay.files)
            return list(conv.history.current().files)

    def set_overlay(self, files: Iterable[ProjectFile]) -> int:
        """Replace the active conversation's overlay; returns its revision."""
        with self._lock:
            conv = self._require(None)
            self._overlay_revision += 1
            self._overlay = _Overlay(
                conversation_id=conv.conversation_id,
                snapshot_version=conv.history.current().version,
                revision=self._overlay_revision,
                files=[f.model_copy() for f in files],
            )
            return self._overlay_revision

    def overlay_files(self) -> Optional[List[ProjectFile]]:
        with self._lock:
            return list(self._overlay.files) if self._overlay else None

    @property
    def overlay_revision(self) -> Optional[int]:
        overlay = self._overlay
        return overlay.revision if overlay else None

    def clear_overlay(self) -> None:
        with self._lock:
            self._overlay = None

    def commit_overlay(self, revision: int) -> Optional[Snapshot]:
        """Push the overlay if it is still the one identified by ``revision``."""
        with self._lock:
            overlay = self._overlay
            if overlay is None or overlay.revision != revision:
                return None
            conv = self._conversations.get(overlay.conversation_id)
            if conv is None or conv.history.current().version != overlay.snapshot_version:
                self._overlay = None
                return None
            return self.push_snapshot(overlay.files, overlay.conversation_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            conversations = []
            for conv in self._conversations.values():
                entry: Dict[str, Any] = {
                    "id": conv.conversation_id,
                    "name": conv.name,
                    "created_at": conv.created_at,
                    "messages": [m.model_dump(mode="json") for m in conv.messages],
                }
                entry.update(conv.history.to_dict())
                conversations.append(entry)
            return {"conversations": conversations, "active_id": self._active_id}

    def load_state(self, raw_conversations: Any, raw_active_id: Any = None) -> int:
        """Replace all conversations with sanitized persisted data.

        Returns the number of conversations loaded. When nothing usable
        survives, a fresh empty conversation is created instead.
        """
        loaded: Dict[str, _Conversation] = {}
        if isinstance(raw_conversations, list):
            for raw in raw_conversations:
                conv = _sanitize_conversation(raw)
                if conv is None:
                    LOG.warning("persisted_conversation_dropped")
                    continue
                loaded[conv.conversation_id] = conv
        with self._lock:
            self._conversations = loaded
            self._overlay = None
            if not loaded:
                self._active_id = None
                self.create()
                return 0
            if isinstance(raw_active_id, str) and raw_active_id in loaded:
                self._active_id = raw_active_id
            else:
                self._active_id = next(iter(loaded))
            return len(loaded)

    def load_from(self, state_store: KeyValueStore) -> int:
        """Restore from a key-value store; unreadable data yields a fresh conversation."""
        raw_chats = state_store.get(CHATS_KEY)
        raw_active = state_store.get(ACTIVE_CHAT_KEY)
        parsed: Any = None
        if raw_chats is not None:
            try:
                parsed = json.loads(raw_chats)
            except (TypeError, ValueError) as exc:
                LOG.warning("persisted_conversations_unreadable", extra={"err": str(exc)})
                parsed = None
        return self.load_state(parsed, raw_active)


def _sanitize_conversation(raw: Any) -> Optional[_Conversation]:
    if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
        return None
    messages: List[Message] = []
    raw_messages = raw.get("messages")
    if isinstance(raw_messages, list):
        for raw_message in raw_messages:
            if not isinstance(raw_message, dict):
                continue
            if not isinstance(raw_message.get("id"), str) or not isinstance(raw_message.get("role"), str):
                continue
            try:
                message = Message.model_validate(raw_message)
            except Exception:
                LOG.warning("persisted_message_dropped", extra={"message_id": raw_message.get("id")})
                continue
            # A persisted in-flight message can never finish; settle it.
            message.is_streaming = False
            message.is_thinking = False
            messages.append(message)
    created_at = raw.get("created_at")
    name = raw.get("name")
    return _Conversation(
        conversation_id=raw["id"],
        name=name if isinstance(name, str) and name.strip() else DEFAULT_CONVERSATION_NAME,
        created_at=created_at if isinstance(created_at, str) else _now_iso(),
        messages=messages,
        history=SnapshotHistory.from_persisted(raw.get("history"), raw.get("history_index")),
    )


_store: InMemoryConversationStore | None = None


def get_conversation_store() -> InMemoryConversationStore:
    global _store
    if _store is None:
        state_store = get_state_store()
        store = InMemoryConversationStore(state_store=state_store)
        store.load_from(state_store)
        _store = store
    return _store


def reset_conversation_store() -> None:
    global _store
    _store = None
