"""Generation orchestration for one logical user turn.

``send`` drives a turn from prompt to committed snapshot. A finished answer
may carry a navigation directive; in the browser view the page is fetched
and a continuation prompt is queued. Continuations are run by the same
``send`` frame from a work queue rather than by recursion, and that frame
holds the only generating lease, so callers see one uninterrupted loading
state for the whole chain.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Literal, Optional, Tuple, assert_never

from ..core import state_machine as sm
from ..core.cancellation import CancellationCoordinator, TurnTokens
from ..core.live_buffer import LiveGenerationBuffer
from ..core.navigation import build_continuation_prompt, find_navigation_url
from ..domain.events import (
    AgentPlanEvent,
    FileChunkEvent,
    FileCompleteEvent,
    FileCreateEvent,
    MetadataEvent,
    ResultEvent,
    StreamEvent,
)
from ..domain.models import (
    GenerationOptions,
    GenerationRequest,
    GroundingChunk,
    InteractionMode,
    LiveFile,
    Message,
    Preferences,
    ProjectFile,
    SelectedElement,
    UploadedImage,
    View,
)
from ..errors import ConversationNotFound, GenerationCancelled
from ..infrastructure.conversation_store import InMemoryConversationStore, get_conversation_store
from ..infrastructure.state_store import get_state_store, load_preferences
from ..observability.metrics import record_navigation, record_turn
from .browser import PageExtractor, extract_readable_text, get_page_extractor
from .generation_client import GenerationStream, get_generation_client
from .model_catalog import ModelCatalog
from .telemetry_sink import record_event

LOG = logging.getLogger("sitesmith.orchestrator")

STOPPED_TEXT = "Generation stopped."
THINKING_TEXT = "..."
DEFAULT_MAX_NAVIGATION_HOPS = int(os.getenv("SITESMITH_MAX_NAVIGATION_HOPS", "3"))

TurnStatus = Literal["completed", "navigated", "stopped", "failed"]


@dataclass
class TurnOutcome:
    conversation_id: str
    message_id: str
    status: TurnStatus
    content: str
    files: List[ProjectFile] = field(default_factory=list)
    snapshot_version: Optional[int] = None
    continuation: Optional[str] = None


@dataclass
class ChainResult:
    turns: List[TurnOutcome] = field(default_factory=list)

    @property
    def last(self) -> Optional[TurnOutcome]:
        return self.turns[-1] if self.turns else None


@dataclass
class _Fold:
    files: List[ProjectFile] = field(default_factory=list)
    grounding: List[GroundingChunk] = field(default_factory=list)
    content: str = ""
    saw_result: bool = False


class GenerationOrchestrator:
    def __init__(
        self,
        store: InMemoryConversationStore,
        stream: GenerationStream,
        extractor: PageExtractor,
        *,
        preferences: Optional[Preferences] = None,
        catalog: Optional[ModelCatalog] = None,
        coordinator: Optional[CancellationCoordinator] = None,
        max_navigation_hops: Optional[int] = None,
    ) -> None:
        self._store = store
        self._stream = stream
        self._extractor = extractor
        self.preferences = preferences or Preferences()
        self.catalog = catalog or ModelCatalog()
        self.coordinator = coordinator or CancellationCoordinator()
        self.buffer = LiveGenerationBuffer()
        self.max_navigation_hops = (
            DEFAULT_MAX_NAVIGATION_HOPS if max_navigation_hops is None else max(0, max_navigation_hops)
        )
        self.view: View = "preview"
        self.interaction_mode: InteractionMode = "navigate"
        self._pending_image: Optional[UploadedImage] = None
        self._selected: List[SelectedElement] = []
        self._phase = sm.IDLE
        # The buffer and phase belong to the most recently started turn.
        # A stopped turn that unwinds later must not touch them.
        self._turn_ids = itertools.count(1)
        self._owner: Optional[int] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def is_generating(self) -> bool:
        return self.coordinator.flag.is_set

    @property
    def phase(self) -> str:
        return self._phase

    def live_files(self) -> List[LiveFile]:
        return self.buffer.files()

    def status(self) -> Dict[str, Any]:
        return {
            "generating": self.is_generating,
            "phase": self._phase,
            "view": self.view,
            "interaction_mode": self.interaction_mode,
            "live_files": [f.model_dump() for f in self.buffer.files()],
            "selected_elements": [el.model_dump() for el in self._selected],
            "has_pending_image": self._pending_image is not None,
        }

    def _transition(self, target: str, turn_id: int) -> None:
        if turn_id != self._owner:
            return
        if sm.is_valid_transition(self._phase, target):
            self._phase = target
            return
        LOG.warning("invalid_phase_transition", extra={"from_phase": self._phase, "to_phase": target})

    # ------------------------------------------------------------------
    # Pending turn context
    # ------------------------------------------------------------------
    def set_pending_image(self, image: Optional[UploadedImage]) -> None:
        self._pending_image = image

    def toggle_selected_element(self, element_id: str, html: str) -> List[SelectedElement]:
        if any(el.id == element_id for el in self._selected):
            self._selected = [el for el in self._selected if el.id != element_id]
        else:
            self._selected = [*self._selected, SelectedElement(id=element_id, html=html)]
        return list(self._selected)

    @property
    def selected_elements(self) -> List[SelectedElement]:
        return list(self._selected)

    def _options(self) -> GenerationOptions:
        prefs = self.preferences
        return GenerationOptions(
            model=prefs.selected_model,
            credentials=self.catalog.credentials_for(prefs.selected_model),
            use_tailwind=prefs.use_tailwind,
            system_prompt=prefs.system_prompt.strip(),
            use_google_search=prefs.use_google_search,
            view=self.view,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def stop(self) -> None:
        self.coordinator.stop()

    async def send(self, prompt: str, image: Optional[UploadedImage] = None) -> ChainResult:
        """Run one logical turn, including any navigation continuations."""
        result = ChainResult()
        # The whole chain stays in the conversation it started in, even if
        # the user selects another one while it runs.
        conversation_id = self._store.active_id
        if conversation_id is None:
            return result
        if image is None:
            image = self._pending_image

        lease = self.coordinator.flag.acquire()
        queue: Deque[Tuple[str, Optional[UploadedImage]]] = deque([(prompt, image)])
        hops = 0
        try:
            while queue and lease.active:
                next_prompt, next_image = queue.popleft()
                outcome = await self._run_turn(
                    conversation_id,
                    next_prompt,
                    next_image,
                    allow_navigation=hops < self.max_navigation_hops,
                )
                if outcome is None:
                    break
                result.turns.append(outcome)
                if outcome.continuation is not None and lease.active:
                    hops += 1
                    queue.append((outcome.continuation, None))
        finally:
            lease.release()
        return result

    # ------------------------------------------------------------------
    # One turn
    # ------------------------------------------------------------------
    async def _run_turn(
        self,
        conversation_id: str,
        prompt: str,
        image: Optional[UploadedImage],
        *,
        allow_navigation: bool,
    ) -> Optional[TurnOutcome]:
        selected = list(self._selected)
        user_message = Message(
            role="user",
            content=prompt,
            image=image,
            element_html="\n".join(el.html for el in selected) if selected else None,
        )
        placeholder = Message(role="model", content=THINKING_TEXT, is_thinking=True, is_streaming=True)
        try:
            self._store.append_messages(conversation_id, user_message, placeholder)
        except ConversationNotFound:
            LOG.info("generation_conversation_gone", extra={"conversation_id": conversation_id})
            return None

        tokens = self.coordinator.begin_turn()
        turn_id = next(self._turn_ids)
        self._owner = turn_id
        self._phase = sm.IDLE
        self._transition(sm.AWAITING, turn_id)
        self.buffer.reset()
        self._pending_image = None
        self._selected = []
        self.interaction_mode = "navigate"

        outcome = TurnOutcome(
            conversation_id=conversation_id,
            message_id=placeholder.id,
            status="completed",
            content="",
        )
        try:
            request = GenerationRequest(
                prompt=prompt,
                image=image,
                files=self._store.effective_files(conversation_id),
                selected_elements=selected,
                options=self._options(),
            )
            record_event("turn_started", conversation_id, model=request.options.model, view=request.options.view)

            fold = _Fold()
            async with contextlib.aclosing(self._stream(request, tokens.stream)) as stream_events:
                async for event in stream_events:
                    # Events that arrive after a stop are dropped, never folded.
                    tokens.stream.raise_if_cancelled()
                    self._fold(event, fold, conversation_id, placeholder.id, turn_id)
            tokens.stream.raise_if_cancelled()

            self._transition(sm.FINALIZING, turn_id)
            self._store.finish_streaming(
                conversation_id,
                placeholder.id,
                content=fold.content,
                files=fold.files,
                grounding_metadata=fold.grounding,
            )
            outcome.content = fold.content
            outcome.files = list(fold.files)
            if not fold.saw_result:
                LOG.warning("stream_ended_without_result", extra={"conversation_id": conversation_id})

            url = find_navigation_url(fold.content) if self.view == "browser" else None
            if url and allow_navigation:
                outcome.status = "navigated"
                outcome.continuation = await self._navigate(conversation_id, url, tokens)
            else:
                if url:
                    self._store.append_messages(
                        conversation_id,
                        Message(
                            role="system",
                            content=(
                                f"Navigation limit reached ({self.max_navigation_hops} hops); "
                                f"not following {url}."
                            ),
                        ),
                    )
                if fold.files:
                    snapshot = self._store.push_snapshot(fold.files, conversation_id)
                    outcome.snapshot_version = snapshot.version
            self._transition(sm.IDLE, turn_id)
        except GenerationCancelled:
            self._transition(sm.CANCELLED, turn_id)
            self._store.finish_streaming(conversation_id, placeholder.id, content=STOPPED_TEXT)
            outcome.status = "stopped"
            outcome.content = STOPPED_TEXT
            outcome.files = []
            outcome.continuation = None
            self._transition(sm.IDLE, turn_id)
        except Exception as exc:
            LOG.exception("generation_turn_failed", extra={"conversation_id": conversation_id})
            self._transition(sm.ERROR, turn_id)
            message = str(exc) or "An unknown error."
            content = f"Sorry, I encountered an error: {message}"
            self._store.finish_streaming(conversation_id, placeholder.id, content=content)
            outcome.status = "failed"
            outcome.content = content
            outcome.files = []
            outcome.continuation = None
            self._transition(sm.IDLE, turn_id)
        finally:
            self.coordinator.end_turn(tokens)
            if self._owner == turn_id:
                self._owner = None
                self.buffer.reset()

        record_turn(outcome.status)
        record_event(
            "turn_finished",
            conversation_id,
            status=outcome.status,
            files=len(outcome.files),
            snapshot_version=outcome.snapshot_version,
        )
        return outcome

    def _fold(self, event: StreamEvent, fold: _Fold, conversation_id: str, message_id: str, turn_id: int) -> None:
        if isinstance(event, AgentPlanEvent):
            self._store.set_plan(conversation_id, message_id, event.plan)
        elif isinstance(event, FileCreateEvent):
            self._transition(sm.CREATING, turn_id)
            self.buffer.create(event.file)
        elif isinstance(event, FileChunkEvent):
            if self.buffer.append_chunk(event.name, event.chunk):
                self._transition(sm.STREAMING, turn_id)
        elif isinstance(event, FileCompleteEvent):
            if self.buffer.complete(event.name):
                self._transition(sm.COMPLETED, turn_id)
        elif isinstance(event, MetadataEvent):
            fold.grounding = list(event.citations)
        elif isinstance(event, ResultEvent):
            fold.saw_result = True
            fold.files = list(event.files)
            if event.fallback_text:
                fold.content = event.fallback_text
        else:
            assert_never(event)

    async def _navigate(self, conversation_id: str, url: str, tokens: TurnTokens) -> Optional[str]:
        self._store.append_messages(conversation_id, Message(role="system", content=f"Navigating to {url}..."))
        record_event("navigation_started", conversation_id, url=url)
        try:
            html = await self._extractor(url, tokens.navigation)
        except Exception as exc:
            reason = str(exc) or "An unknown navigation error occurred."
            LOG.warning("navigation_failed", extra={"url": url, "err": reason})
            self._store.append_messages(
                conversation_id,
                Message(role="system", content=f"Navigation failed: {reason}"),
            )
            record_navigation("failed")
            return None
        if not html:
            LOG.info("navigation_empty_page", extra={"url": url})
            record_navigation("empty")
            return None
        record_navigation("followed")
        return build_continuation_prompt(extract_readable_text(html))


_orchestrator: GenerationOrchestrator | None = None


def get_orchestrator() -> GenerationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = GenerationOrchestrator(
            get_conversation_store(),
            get_generation_client(),
            get_page_extractor(),
            preferences=load_preferences(get_state_store()),
        )
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None
