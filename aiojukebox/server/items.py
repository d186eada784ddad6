"""Items that can be queued and rendered by the host."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

from mashumaro import DataClassDictMixin

from aiojukebox.models.core import QueueItemPayload

DEFAULT_HISTORY_TITLE = "History track"


def new_item_id() -> str:
    """Return a new opaque item id, roughly ordered by creation time."""
    return f"{time.time_ns() // 1_000_000:x}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class HistoryEntry(DataClassDictMixin):
    """A content id that was played before."""

    content_id: str
    display_name: str | None = None
    """First display name seen for this content id."""


@dataclass(slots=True, frozen=True)
class QueueItem:
    """A submission of a participant, or a pick from play history."""

    item_id: str
    content_id: str
    owner_id: str | None
    """Identity of the submitting participant, None for history items."""
    owner_name: str | None
    title: str | None = None
    is_history: bool = False

    @classmethod
    def from_history(cls, entry: HistoryEntry) -> QueueItem:
        """Build the synthetic, ownerless item used for history fallback."""
        return cls(
            item_id=f"history-{new_item_id()}",
            content_id=entry.content_id,
            owner_id=None,
            owner_name=None,
            title=entry.display_name or DEFAULT_HISTORY_TITLE,
            is_history=True,
        )

    def to_history_entry(self) -> HistoryEntry:
        """Return the entry recorded in play history for this item."""
        return HistoryEntry(content_id=self.content_id, display_name=self.title)

    def to_payload(self) -> QueueItemPayload:
        """Convert to the wire representation."""
        return QueueItemPayload(
            item_id=self.item_id,
            content_id=self.content_id,
            owner_id=self.owner_id,
            owner_name=self.owner_name,
            title=self.title,
            is_history=self.is_history,
        )
