"""Fair selection of the next item to play."""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping

from .items import QueueItem
from .persistence import HistoryStore
from .queue import ParticipantQueues
from .session import Participant, SessionRegistry

logger = logging.getLogger(__name__)


class FairnessScheduler:
    """
    Decides whose submission plays next.

    Participants are served in order of their accumulated wait time, longest
    first. Equal wait times are broken by registration order, first registered
    first. Within a participant's queue items play in submission order. When no
    participant has anything queued, a random entry of the play history is
    picked instead.

    The scheduler never mutates queues or counters itself; the playback
    controller dequeues the selected item once it has been recorded in play
    history.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        queues: ParticipantQueues,
        history: HistoryStore,
        *,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler on top of the shared tables."""
        self._registry = registry
        self._queues = queues
        self._history = history
        self._rng = rng or random.Random()

    def candidates(self, waits: Mapping[str, int] | None = None) -> list[Participant]:
        """
        Return participants with pending items in serving order.

        Args:
            waits: Wait counters to order by, defaults to the current counters.
        """
        if waits is None:
            waits = self._registry.wait_snapshot()
        pending = [
            participant
            for participant in self._registry.participants
            if self._queues.has_pending(participant.identity)
        ]
        return sorted(
            pending,
            key=lambda p: (-waits.get(p.identity, p.wait_seconds), p.order),
        )

    async def select_next(self, waits: Mapping[str, int] | None = None) -> QueueItem | None:
        """
        Select the next item without dequeuing it.

        Raises:
            StoreError: If the play history had to be consulted and could not be read.
        """
        waits = dict(self._registry.wait_snapshot() if waits is None else waits)
        candidates = self.candidates(waits)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Wait times: %s",
                ", ".join(f"{p.identity}={waits.get(p.identity, 0)}s" for p in candidates)
                or "no pending items",
            )
        if candidates:
            item = self._queues.peek(candidates[0].identity)
            assert item is not None
            return item

        entry = await self._history.choose(self._rng)
        if entry is None:
            logger.debug("Nothing queued and play history is empty")
            return None
        logger.debug("Nothing queued, falling back to history entry %s", entry.content_id)
        return QueueItem.from_history(entry)

    @staticmethod
    def credit(
        waits: Mapping[str, int], finished: QueueItem | None, elapsed_seconds: int
    ) -> dict[str, int]:
        """
        Return wait counters after ``finished`` occupied playback for ``elapsed_seconds``.

        Every participant except the owner of ``finished`` gains the elapsed time.
        The owner keeps its counter as is. History items credit nobody.
        """
        credited = dict(waits)
        if finished is None or finished.owner_id is None or elapsed_seconds <= 0:
            return credited
        for identity in credited:
            if identity != finished.owner_id:
                credited[identity] += elapsed_seconds
        return credited
