"""Per-participant FIFO queues of pending items."""

from __future__ import annotations

import logging
from collections import deque

from .items import QueueItem, new_item_id

logger = logging.getLogger(__name__)


class ParticipantQueues:
    """
    One FIFO queue per participant identity.

    Every operation is scoped to a single identity: an item can only be looked up
    in the queue of the participant that submitted it.
    """

    _queues: dict[str, deque[QueueItem]]

    def __init__(self) -> None:
        """Initialize without any queues."""
        self._queues = {}

    def submit(
        self, identity: str, content_id: str, owner_name: str, title: str | None = None
    ) -> str:
        """
        Append a new item to the tail of the queue of ``identity``.

        Unknown identities get an empty queue first.

        Returns:
            The id of the new item.
        """
        item = QueueItem(
            item_id=new_item_id(),
            content_id=content_id,
            owner_id=identity,
            owner_name=owner_name,
            title=title,
        )
        self._queues.setdefault(identity, deque()).append(item)
        logger.debug("Queued %s as %s for %s", content_id, item.item_id, identity)
        return item.item_id

    def withdraw(self, identity: str, item_id: str) -> bool:
        """
        Remove ``item_id`` from the queue of ``identity``.

        Returns:
            False without changing anything if the item is not in that queue.
        """
        queue = self._queues.get(identity)
        if not queue:
            return False
        for item in queue:
            if item.item_id == item_id:
                queue.remove(item)
                logger.debug("Withdrew %s from %s", item_id, identity)
                return True
        return False

    def has_pending(self, identity: str) -> bool:
        """Whether the queue of ``identity`` holds at least one item."""
        return bool(self._queues.get(identity))

    def peek(self, identity: str) -> QueueItem | None:
        """Return the oldest item of ``identity`` without removing it."""
        queue = self._queues.get(identity)
        return queue[0] if queue else None

    def dequeue(self, identity: str) -> QueueItem:
        """Remove and return the oldest item of ``identity``."""
        queue = self._queues.get(identity)
        if not queue:
            raise LookupError(f"Queue of {identity} is empty")
        return queue.popleft()

    def drop(self, identity: str) -> list[QueueItem]:
        """Delete the queue of ``identity``, returning the items it held."""
        return list(self._queues.pop(identity, ()))

    def items(self, identity: str) -> list[QueueItem]:
        """Return the pending items of ``identity`` in playback order."""
        return list(self._queues.get(identity, ()))

    def identities(self) -> list[str]:
        """Return all identities that have a queue, in creation order."""
        return list(self._queues)
