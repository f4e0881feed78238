from __future__ import annotations

import logging
from threading import RLock
from typing import List, Optional

from ..domain.models import LiveFile, ProjectFile

LOG = logging.getLogger("sitesmith.stream")


class LiveGenerationBuffer:
    """In-progress file bodies for the stream currently being folded.

    Entries are replaced rather than mutated so readers holding a list from
    ``files()`` never observe a half-applied chunk.
    """

    def __init__(self) -> None:
        self._files: List[LiveFile] = []
        self._anomalies = 0
        self._lock = RLock()

    def _index(self, name: str) -> Optional[int]:
        for i, f in enumerate(self._files):
            if f.name == name:
                return i
        return None

    def reset(self) -> None:
        with self._lock:
            self._files = []
            self._anomalies = 0

    def create(self, file: ProjectFile) -> None:
        with self._lock:
            self._files.append(
                LiveFile(name=file.name, content="", language=file.language, status="streaming")
            )

    def append_chunk(self, name: str, chunk: str) -> bool:
        """Append ``chunk`` to the named entry; returns False if it does not exist."""
        with self._lock:
            idx = self._index(name)
            if idx is None:
                self._anomalies += 1
                LOG.warning("live_buffer_chunk_for_unknown_file", extra={"file_name": name})
                return False
            entry = self._files[idx]
            self._files[idx] = entry.model_copy(update={"content": entry.content + chunk})
            return True

    def complete(self, name: str) -> bool:
        with self._lock:
            idx = self._index(name)
            if idx is None:
                self._anomalies += 1
                LOG.warning("live_buffer_complete_for_unknown_file", extra={"file_name": name})
                return False
            self._files[idx] = self._files[idx].model_copy(update={"status": "completed"})
            return True

    def files(self) -> List[LiveFile]:
        with self._lock:
            return list(self._files)

    def get(self, name: str) -> Optional[LiveFile]:
        with self._lock:
            idx = self._index(name)
            return self._files[idx] if idx is not None else None

    @property
    def anomalies(self) -> int:
        return self._anomalies
