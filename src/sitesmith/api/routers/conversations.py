from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, status

from ...domain.models import (
    Conversation,
    ConversationCreate,
    ConversationRename,
    ConversationSummary,
    ElementSelection,
    ElementTextEdit,
    FileEdit,
    Message,
    SelectedElement,
)
from ...errors import ConversationNotFound, InvalidConversationName, LastConversationError
from ...infrastructure.conversation_store import get_conversation_store
from ...services.editing import get_editing_service
from ...services.orchestrator import get_orchestrator

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _active_or_404() -> Conversation:
    conv = get_conversation_store().active()
    if conv is None:
        raise HTTPException(status_code=404, detail="No active conversation")
    return conv


@router.get("", response_model=List[ConversationSummary])
def list_conversations() -> List[ConversationSummary]:
    return get_conversation_store().list()


@router.post("", response_model=Conversation, status_code=status.HTTP_201_CREATED)
def create_conversation(req: ConversationCreate) -> Conversation:
    return get_conversation_store().create(req.name)


@router.get("/active")
def active_view() -> Dict[str, Any]:
    """The active conversation together with the in-flight generation state."""
    conv = _active_or_404()
    orch = get_orchestrator()
    return {
        "conversation": conv.model_dump(mode="json"),
        "live_files": [f.model_dump(mode="json") for f in orch.live_files()],
        "generating": orch.is_generating,
        "view": orch.view,
        "interaction_mode": orch.interaction_mode,
        "selected_elements": [el.model_dump() for el in orch.selected_elements],
    }


@router.post("/active/undo", response_model=Conversation)
async def undo() -> Conversation:
    _active_or_404()
    store = get_conversation_store()
    get_editing_service().cancel()
    store.undo()
    return _active_or_404()


@router.post("/active/redo", response_model=Conversation)
async def redo() -> Conversation:
    _active_or_404()
    store = get_conversation_store()
    get_editing_service().cancel()
    store.redo()
    return _active_or_404()


@router.put("/active/files/{name}", response_model=Conversation)
async def edit_file(name: str, req: FileEdit) -> Conversation:
    _active_or_404()
    get_editing_service().edit_file(name, req.content)
    return _active_or_404()


@router.post("/active/element-edits", response_model=Conversation)
async def edit_element_text(req: ElementTextEdit) -> Conversation:
    _active_or_404()
    snapshot = get_editing_service().apply_element_text_edit(req.element_id, req.content)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Element not found: {req.element_id}")
    return _active_or_404()


@router.post("/active/selections", response_model=List[SelectedElement])
def toggle_selection(req: ElementSelection) -> List[SelectedElement]:
    _active_or_404()
    return get_orchestrator().toggle_selected_element(req.element_id, req.html)


@router.get("/{conversation_id}", response_model=Conversation)
def get_conversation(conversation_id: str) -> Conversation:
    conv = get_conversation_store().get(conversation_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.get("/{conversation_id}/messages", response_model=List[Message])
def list_messages(conversation_id: str) -> List[Message]:
    try:
        return get_conversation_store().list_messages(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.post("/{conversation_id}/select", response_model=Conversation)
async def select_conversation(conversation_id: str) -> Conversation:
    store = get_conversation_store()
    if store.select(conversation_id):
        get_editing_service().cancel()
    # Unknown ids leave the active conversation unchanged.
    return _active_or_404()


@router.patch("/{conversation_id}", response_model=Conversation)
def rename_conversation(conversation_id: str, req: ConversationRename) -> Conversation:
    try:
        return get_conversation_store().rename(conversation_id, req.name)
    except InvalidConversationName as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(conversation_id: str) -> None:
    try:
        get_conversation_store().delete(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except LastConversationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
