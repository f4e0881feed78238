from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, BackgroundTasks, HTTPException, status

from ...domain.models import Preferences, PreferencesUpdate, SendRequest, ViewUpdate
from ...infrastructure.conversation_store import get_conversation_store
from ...infrastructure.state_store import get_state_store, save_preferences
from ...services.model_catalog import ModelCatalog, ModelOption
from ...services.orchestrator import get_orchestrator
from ...services.telemetry_sink import list_recent_events

router = APIRouter(prefix="/generation", tags=["generation"])


@router.post("/send", status_code=status.HTTP_202_ACCEPTED)
def send(req: SendRequest, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    orch = get_orchestrator()
    conversation_id = get_conversation_store().active_id
    if conversation_id is None:
        raise HTTPException(status_code=404, detail="No active conversation")
    if req.image is not None and not orch.catalog.supports_images(orch.preferences.selected_model):
        raise HTTPException(status_code=422, detail="The selected model does not accept images")
    background_tasks.add_task(orch.send, req.prompt, req.image)
    return {"accepted": True, "conversation_id": conversation_id}


@router.post("/stop")
def stop() -> Dict[str, Any]:
    orch = get_orchestrator()
    orch.stop()
    return {"generating": orch.is_generating}


@router.get("/status")
def generation_status() -> Dict[str, Any]:
    return get_orchestrator().status()


@router.put("/view")
def set_view(req: ViewUpdate) -> Dict[str, Any]:
    orch = get_orchestrator()
    orch.view = req.view
    return {"view": orch.view}


@router.get("/preferences", response_model=Preferences)
def get_preferences() -> Preferences:
    return get_orchestrator().preferences


@router.put("/preferences", response_model=Preferences)
def update_preferences(req: PreferencesUpdate) -> Preferences:
    orch = get_orchestrator()
    changes = req.model_dump(exclude_none=True)
    model = changes.get("selected_model")
    if model is not None:
        model = model.strip()
        if not model:
            raise HTTPException(status_code=422, detail="Model id must not be empty")
        changes["selected_model"] = model
    orch.preferences = orch.preferences.model_copy(update=changes)
    save_preferences(get_state_store(), orch.preferences)
    return orch.preferences


@router.get("/models", response_model=List[ModelOption])
def list_models() -> List[ModelOption]:
    return ModelCatalog().list_models()


@router.get("/events")
def recent_events(limit: int = 50) -> List[Dict[str, Any]]:
    return [
        {"name": e.name, "conversation_id": e.conversation_id, "properties": e.properties}
        for e in list_recent_events(limit)
    ]
