"""Linear undo/redo history of committed file sets.

Every snapshot carries a version number that is unique within its history,
so "is this still the snapshot I started from" is answered by comparing
integers rather than object identity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..domain.models import ProjectFile


@dataclass(frozen=True)
class Snapshot:
    version: int
    files: Tuple[ProjectFile, ...] = field(default_factory=tuple)

    def file_names(self) -> List[str]:
        return [f.name for f in self.files]

    def get(self, name: str) -> Optional[ProjectFile]:
        for f in self.files:
            if f.name == name:
                return f
        return None


def _dedupe_by_name(files: Iterable[ProjectFile]) -> Tuple[ProjectFile, ...]:
    # Later entries win but keep the position of the first occurrence.
    order: List[str] = []
    by_name: Dict[str, ProjectFile] = {}
    for f in files:
        if f.name not in by_name:
            order.append(f.name)
        by_name[f.name] = f.model_copy()
    return tuple(by_name[name] for name in order)


class SnapshotHistory:
    def __init__(self, snapshots: Optional[Sequence[Snapshot]] = None, cursor: int = 0) -> None:
        self._snapshots: List[Snapshot] = list(snapshots) if snapshots else [Snapshot(version=0)]
        if not 0 <= cursor < len(self._snapshots):
            cursor = 0
        self._cursor = cursor
        self._next_version = max(s.version for s in self._snapshots) + 1

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def snapshots(self) -> Tuple[Snapshot, ...]:
        return tuple(self._snapshots)

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._snapshots) - 1

    def current(self) -> Snapshot:
        return self._snapshots[self._cursor]

    def push(self, files: Iterable[ProjectFile]) -> Snapshot:
        """Commit ``files`` after the cursor, dropping any redo branch."""
        snapshot = Snapshot(version=self._next_version, files=_dedupe_by_name(files))
        self._next_version += 1
        del self._snapshots[self._cursor + 1 :]
        self._snapshots.append(snapshot)
        self._cursor = len(self._snapshots) - 1
        return snapshot

    def undo(self) -> bool:
        """Step back one snapshot. Returns whether the cursor moved."""
        if self._cursor == 0:
            return False
        self._cursor -= 1
        return True

    def redo(self) -> bool:
        if self._cursor >= len(self._snapshots) - 1:
            return False
        self._cursor += 1
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "history": [
                {"version": s.version, "files": [f.model_dump() for f in s.files]}
                for s in self._snapshots
            ],
            "history_index": self._cursor,
        }

    @classmethod
    def from_persisted(cls, raw_history: Any, raw_cursor: Any) -> "SnapshotHistory":
        """Rebuild a history from untrusted persisted data.

        Unreadable snapshots become empty ones; an empty or missing history
        becomes a single empty snapshot; an out-of-range cursor becomes 0.
        """
        snapshots: List[Snapshot] = []
        if isinstance(raw_history, list):
            for index, entry in enumerate(raw_history):
                files: List[ProjectFile] = []
                raw_files = entry.get("files") if isinstance(entry, dict) else None
                if isinstance(raw_files, list):
                    for raw_file in raw_files:
                        try:
                            files.append(ProjectFile.model_validate(raw_file))
                        except Exception:
                            continue
                version = entry.get("version") if isinstance(entry, dict) else None
                if not isinstance(version, int) or isinstance(version, bool):
                    version = index
                snapshots.append(Snapshot(version=version, files=_dedupe_by_name(files)))
        if len({s.version for s in snapshots}) != len(snapshots):
            snapshots = [Snapshot(version=i, files=s.files) for i, s in enumerate(snapshots)]
        cursor = raw_cursor if isinstance(raw_cursor, int) and not isinstance(raw_cursor, bool) else 0
        return cls(snapshots or None, cursor)
