# resi_hub/services/undo.py
"""
Undo history for deletions.

One stack per operator session, owned by the caller and passed into
``ResiStageService.delete_receipt``. Entries are full receipt snapshots.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

Snapshot = Dict[str, Any]


class UndoStack:
    def __init__(self, limit: Optional[int] = None):
        self._entries: List[Snapshot] = []
        self.limit = limit

    def push(self, snapshot: Snapshot) -> None:
        self._entries.append(dict(snapshot))
        if self.limit is not None and len(self._entries) > self.limit:
            del self._entries[0]

    def pop(self) -> Optional[Snapshot]:
        """Most recent snapshot, or None when there is nothing to undo."""
        if not self._entries:
            return None
        return self._entries.pop()

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)
