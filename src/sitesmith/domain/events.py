"""Typed events produced by the generation stream.

The backend emits six event kinds, discriminated by their ``type`` field.
``parse_event`` turns one decoded wire payload into the matching model;
payloads with an unknown ``type`` raise :class:`UnknownStreamEvent`.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .models import AgentPlan, GroundingChunk, ProjectFile


class AgentPlanEvent(BaseModel):
    type: Literal["agent_plan"] = "agent_plan"
    plan: AgentPlan


class FileCreateEvent(BaseModel):
    type: Literal["file_create"] = "file_create"
    file: ProjectFile


class FileChunkEvent(BaseModel):
    type: Literal["file_chunk"] = "file_chunk"
    name: str
    chunk: str


class FileCompleteEvent(BaseModel):
    type: Literal["file_complete"] = "file_complete"
    name: str


class MetadataEvent(BaseModel):
    type: Literal["metadata"] = "metadata"
    citations: List[GroundingChunk] = Field(default_factory=list, alias="data")

    model_config = {"populate_by_name": True}


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    files: List[ProjectFile] = Field(default_factory=list, alias="data")
    fallback_text: Optional[str] = Field(default=None, alias="fallbackText")

    model_config = {"populate_by_name": True}


StreamEvent = Annotated[
    Union[
        AgentPlanEvent,
        FileCreateEvent,
        FileChunkEvent,
        FileCompleteEvent,
        MetadataEvent,
        ResultEvent,
    ],
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset(
    {"agent_plan", "file_create", "file_chunk", "file_complete", "metadata", "result"}
)

_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


class UnknownStreamEvent(ValueError):
    def __init__(self, event_type: Any) -> None:
        super().__init__(f"Unknown stream event type: {event_type!r}")
        self.event_type = event_type


def parse_event(payload: Dict[str, Any]) -> StreamEvent:
    """Validate one wire payload into a typed event.

    Raises ``UnknownStreamEvent`` for unrecognised types and
    ``pydantic.ValidationError`` for malformed known ones.
    """
    event_type = payload.get("type") if isinstance(payload, dict) else None
    if event_type not in EVENT_TYPES:
        raise UnknownStreamEvent(event_type)
    return _adapter.validate_python(payload)


__all__ = [
    "AgentPlanEvent",
    "FileCreateEvent",
    "FileChunkEvent",
    "FileCompleteEvent",
    "MetadataEvent",
    "ResultEvent",
    "StreamEvent",
    "UnknownStreamEvent",
    "ValidationError",
    "parse_event",
]
