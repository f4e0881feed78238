"""Manual file edits and in-preview element text edits.

Manual edits land in the store's live overlay and are committed to history by
a debounced task, so a burst of keystrokes produces one snapshot carrying the
latest content. Element text edits are committed immediately.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from bs4 import BeautifulSoup, Doctype

from ..core.debounce import Debouncer
from ..core.history import Snapshot
from ..domain.models import ProjectFile
from ..infrastructure.conversation_store import InMemoryConversationStore, get_conversation_store
from .telemetry_sink import record_event

LOG = logging.getLogger("sitesmith.store")

INDEX_FILE = "index.html"
DOCTYPE = "<!DOCTYPE html>"
DEFAULT_DEBOUNCE_SECONDS = float(os.getenv("SITESMITH_EDIT_DEBOUNCE_SECONDS", "1.0"))


def replace_element_html(document: str, element_id: str, new_content: str) -> Optional[str]:
    """Return ``document`` with the inner HTML of ``[data-ai-id=element_id]`` replaced.

    None when no element carries that id.
    """
    soup = BeautifulSoup(document, "html.parser")
    target = soup.find(attrs={"data-ai-id": element_id})
    if target is None:
        return None
    target.clear()
    fragment = BeautifulSoup(new_content, "html.parser")
    for node in list(fragment.contents):
        target.append(node.extract())

    for node in list(soup.contents):
        if isinstance(node, Doctype):
            node.extract()
    root = soup.html or soup
    body = str(root).strip()
    if document.strip().lower().startswith(DOCTYPE.lower()):
        return f"{DOCTYPE}\n{body}"
    return body


class EditingService:
    def __init__(self, store: InMemoryConversationStore, debounce_seconds: Optional[float] = None) -> None:
        self._store = store
        delay = DEFAULT_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._debouncer = Debouncer(delay, self._commit)
        self.last_commit: Optional[Snapshot] = None

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def edit_file(self, name: str, content: str) -> int:
        """Put an edited file into the overlay and schedule its commit.

        Must be called from a running event loop. Returns the overlay revision.
        """
        files: List[ProjectFile] = []
        found = False
        for f in self._store.effective_files():
            if f.name == name:
                files.append(f.model_copy(update={"content": content}))
                found = True
            else:
                files.append(f)
        if not found:
            files.append(ProjectFile(name=name, content=content))
        revision = self._store.set_overlay(files)
        self._debouncer.call(revision)
        return revision

    def _commit(self, revision: int) -> None:
        snapshot = self._store.commit_overlay(revision)
        if snapshot is None:
            LOG.info("manual_edit_commit_dropped", extra={"revision": revision})
            return
        self.last_commit = snapshot
        record_event("manual_edit_committed", self._store.active_id, snapshot_version=snapshot.version)

    async def flush(self) -> None:
        await self._debouncer.flush()

    def cancel(self) -> None:
        self._debouncer.cancel()

    def apply_element_text_edit(self, element_id: str, new_content: str) -> Optional[Snapshot]:
        files = self._store.effective_files()
        index = next((f for f in files if f.name == INDEX_FILE), None)
        if index is None:
            LOG.warning("element_edit_without_index", extra={"element_id": element_id})
            return None
        updated = replace_element_html(index.content, element_id, new_content)
        if updated is None:
            LOG.warning("element_edit_target_missing", extra={"element_id": element_id})
            return None
        # A pending manual edit is folded into this snapshot; its own commit is moot.
        self._debouncer.cancel()
        new_files = [f.model_copy(update={"content": updated}) if f.name == INDEX_FILE else f for f in files]
        snapshot = self._store.push_snapshot(new_files)
        record_event("element_edit_committed", self._store.active_id, element_id=element_id)
        return snapshot


_editing: EditingService | None = None


def get_editing_service() -> EditingService:
    global _editing
    if _editing is None:
        _editing = EditingService(get_conversation_store())
    return _editing


def reset_editing_service() -> None:
    global _editing
    if _editing is not None:
        _editing.cancel()
    _editing = None
