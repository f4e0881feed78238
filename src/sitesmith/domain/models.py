from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


Role = Literal["user", "model", "system"]
Language = Literal["html", "css", "javascript", "markdown"]
FileStatus = Literal["streaming", "completed"]
View = Literal["preview", "code", "split", "browser"]
InteractionMode = Literal["select", "navigate"]

_EXTENSION_LANGUAGES: Dict[str, Language] = {
    "html": "html",
    "htm": "html",
    "css": "css",
    "js": "javascript",
    "mjs": "javascript",
    "md": "markdown",
}


def guess_language(name: str) -> Language:
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return _EXTENSION_LANGUAGES.get(ext, "html")


def new_id() -> str:
    return uuid.uuid4().hex


class _WireModel(BaseModel):
    """Accepts both camelCase (generation backend) and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProjectFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    content: str = ""
    language: Language = "html"

    @model_validator(mode="before")
    @classmethod
    def _default_language(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("language") and isinstance(data.get("name"), str):
            data = {**data, "language": guess_language(data["name"])}
        return data


class LiveFile(ProjectFile):
    status: FileStatus = "streaming"


class UploadedImage(_WireModel):
    base64: str
    mime_type: str


class SelectedElement(BaseModel):
    id: str
    html: str


class WebSource(BaseModel):
    uri: str
    title: str = ""


class GroundingChunk(BaseModel):
    web: Optional[WebSource] = None


class PlanFileEntry(BaseModel):
    name: str
    description: str = ""


class PaletteColor(BaseModel):
    name: str
    hex: str


class Typography(BaseModel):
    primary: str
    secondary: Optional[str] = None


class DesignSystem(BaseModel):
    palette: List[PaletteColor] = Field(default_factory=list)
    typography: Optional[Typography] = None


class PlanComponent(BaseModel):
    name: str
    description: str = ""


class AgentPlan(_WireModel):
    overview: str = ""
    file_structure: List[PlanFileEntry] = Field(default_factory=list)
    design_system: DesignSystem = Field(default_factory=DesignSystem)
    component_breakdown: List[PlanComponent] = Field(default_factory=list)


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str = ""
    image: Optional[UploadedImage] = None
    element_html: Optional[str] = None
    is_thinking: bool = False
    is_streaming: bool = False
    files: Optional[List[ProjectFile]] = None
    grounding_metadata: Optional[List[GroundingChunk]] = None
    plan: Optional[AgentPlan] = None


class ConversationSummary(BaseModel):
    id: str
    name: str
    created_at: str
    message_count: int
    active: bool = False


class Conversation(BaseModel):
    """Read model of one conversation, as served to callers."""

    id: str
    name: str
    created_at: str
    messages: List[Message]
    files: List[ProjectFile]
    history_length: int
    history_index: int
    snapshot_version: int
    has_overlay: bool = False
    can_undo: bool = False
    can_redo: bool = False


class Preferences(BaseModel):
    selected_model: str = "gemini-2.5-flash"
    use_tailwind: bool = True
    system_prompt: str = ""
    use_google_search: bool = False


class GenerationOptions(BaseModel):
    model: str
    credentials: Dict[str, str] = Field(default_factory=dict)
    use_tailwind: bool = True
    system_prompt: str = ""
    use_google_search: bool = False
    view: View = "preview"


class GenerationRequest(BaseModel):
    """Everything the generation backend receives for one turn."""

    prompt: str
    image: Optional[UploadedImage] = None
    files: List[ProjectFile] = Field(default_factory=list)
    selected_elements: List[SelectedElement] = Field(default_factory=list)
    options: GenerationOptions


# HTTP request bodies


class ConversationCreate(BaseModel):
    name: Optional[str] = None


class ConversationRename(BaseModel):
    name: str


class FileEdit(BaseModel):
    content: str


class ElementTextEdit(BaseModel):
    element_id: str
    content: str


class ElementSelection(BaseModel):
    element_id: str
    html: str = ""


class SendRequest(BaseModel):
    prompt: str = Field(min_length=1)
    image: Optional[UploadedImage] = None


class ViewUpdate(BaseModel):
    view: View


class PreferencesUpdate(BaseModel):
    selected_model: Optional[str] = None
    use_tailwind: Optional[bool] = None
    system_prompt: Optional[str] = None
    use_google_search: Optional[bool] = None
