"""Playback state machine of the shared player."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from aiojukebox.models.types import PlaybackStatus

from .items import QueueItem
from .persistence import HistoryStore
from .queue import ParticipantQueues
from .scheduler import FairnessScheduler
from .session import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PlaybackState:
    """Snapshot of the shared player."""

    status: PlaybackStatus
    current_item: QueueItem | None = None
    started_at: float | None = None
    """Clock reading when the current item started, set iff status is PLAYING."""


_IDLE = PlaybackState(PlaybackStatus.IDLE)


class PlaybackController:
    """
    Drives the shared player between IDLE and PLAYING.

    The scheduler is invoked whenever playback may start or has just ended: on a
    submission while idle, when a host attaches with work pending, when the host
    reports the end of the current item, and on an authorized skip.

    All state changes of one transition are planned first and committed only
    after play history was updated, so a failing store leaves queues, wait times
    and playback state untouched.
    """

    _state: PlaybackState
    _on_play: Callable[[QueueItem], None]
    """Called after committing a new current item; tells the host to render it."""
    _on_stop: Callable[[], None]
    """Called when playback became idle while a host is attached."""

    def __init__(
        self,
        registry: SessionRegistry,
        queues: ParticipantQueues,
        scheduler: FairnessScheduler,
        history: HistoryStore,
        *,
        on_play: Callable[[QueueItem], None],
        on_stop: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize an idle controller.

        Args:
            registry: Participants and host binding.
            queues: Pending items per participant.
            scheduler: Picks the next item.
            history: Records every item that starts playing.
            on_play: Callback instructing the host to render an item.
            on_stop: Callback instructing the host to stop rendering.
            clock: Source of wall-clock seconds used to measure playback time.
        """
        self._registry = registry
        self._queues = queues
        self._scheduler = scheduler
        self._history = history
        self._on_play = on_play
        self._on_stop = on_stop
        self._clock = clock
        self._state = _IDLE

    @property
    def state(self) -> PlaybackState:
        """Current playback state."""
        return self._state

    @property
    def status(self) -> PlaybackStatus:
        """Current playback status."""
        return self._state.status

    @property
    def current_item(self) -> QueueItem | None:
        """Item being rendered, None while idle."""
        return self._state.current_item

    async def on_submit(self) -> bool:
        """
        Start playback after a submission if the player is idle and a host is attached.

        Returns:
            True if playback started.
        """
        if self._state.status is PlaybackStatus.PLAYING or not self._registry.has_host:
            return False
        return await self._advance(finished=None, waits=None)

    async def on_host_attached(self) -> bool:
        """
        React to a new host connection.

        While playing, the new host is told to render the current item. While idle,
        playback starts if any participant has items queued.

        Returns:
            True if playback started.
        """
        if self._state.current_item is not None:
            self._on_play(self._state.current_item)
            return False
        if not self._scheduler.candidates():
            return False
        return await self._advance(finished=None, waits=None)

    def on_host_detached(self) -> None:
        """Keep the current state, later transitions stay idle until a host attaches."""
        if self._state.status is PlaybackStatus.PLAYING:
            logger.info(
                "Host detached while playing %s, waiting for a new host",
                self._state.current_item.content_id if self._state.current_item else None,
            )

    async def track_finished(self) -> bool:
        """
        Handle the end of the current item as reported by the host.

        Returns:
            False if nothing was playing and the report was ignored.
        """
        if self._state.status is not PlaybackStatus.PLAYING:
            logger.debug("Ignoring track end while idle")
            return False
        await self._finish_current()
        return True

    def may_skip(self, identity: str | None) -> bool:
        """Whether ``identity`` may skip the current item."""
        current = self._state.current_item
        if current is None:
            return False
        if current.is_history:
            return True
        return identity is not None and identity == current.owner_id

    async def skip(self, identity: str | None) -> bool:
        """
        End the current item early on behalf of ``identity``.

        Returns:
            False without any side effect if the request is not authorized.
        """
        if not self.may_skip(identity):
            logger.info("Skip denied for %s", identity)
            return False
        assert self._state.current_item is not None
        logger.info("Skip of %s granted to %s", self._state.current_item.content_id, identity)
        await self._finish_current()
        return True

    def elapsed_seconds(self, now: float | None = None) -> int:
        """Whole seconds the current item has been playing, 0 while idle."""
        started_at = self._state.started_at
        if started_at is None:
            return 0
        if now is None:
            now = self._clock()
        return max(0, math.floor(now - started_at))

    async def _finish_current(self) -> None:
        finished = self._state.current_item
        elapsed = self.elapsed_seconds()
        waits = self._scheduler.credit(self._registry.wait_snapshot(), finished, elapsed)
        logger.info(
            "Finished %s after %ds",
            finished.content_id if finished is not None else None,
            elapsed,
        )
        await self._advance(finished=finished, waits=waits)

    async def _advance(
        self, *, finished: QueueItem | None, waits: Mapping[str, int] | None
    ) -> bool:
        """
        Select and commit the next item.

        Raises:
            StoreError: If play history could not be read or written. Nothing was
                changed in that case.
        """
        if waits is None:
            waits = self._registry.wait_snapshot()

        selected: QueueItem | None = None
        if self._registry.has_host:
            selected = await self._scheduler.select_next(waits)
            if selected is not None:
                await self._history.record(selected.to_history_entry())
        else:
            logger.debug("No host attached, staying idle")

        # Commit
        self._registry.apply_waits(waits)
        if selected is None:
            was_playing = self._state.status is PlaybackStatus.PLAYING
            self._state = _IDLE
            if was_playing or finished is not None:
                logger.info("Playback idle")
                if self._registry.has_host:
                    self._on_stop()
            return False

        if selected.owner_id is not None:
            dequeued = self._queues.dequeue(selected.owner_id)
            assert dequeued is selected
        self._state = PlaybackState(PlaybackStatus.PLAYING, selected, self._clock())
        logger.info(
            "Playing %s (%s)",
            selected.content_id,
            "history" if selected.is_history else f"queued by {selected.owner_id}",
        )
        self._on_play(selected)
        return True
