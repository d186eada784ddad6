"""Shared fixtures for the jukebox tests."""

from __future__ import annotations

import asyncio
import random
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from aiojukebox.server import (
    FairnessScheduler,
    HistoryStore,
    JukeboxServer,
    KeyValueStore,
    MemoryStore,
    ParticipantQueues,
    PlaybackController,
    QueueItem,
    SessionRegistry,
    StoreError,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(MemoryStore):
    """Memory store whose reads and writes can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key: str) -> Any | None:
        if self.fail_reads:
            raise StoreError(f"cannot read {key}")
        return await super().get(key)

    async def put(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StoreError(f"cannot write {key}")
        await super().put(key, value)


@dataclass
class Jukebox:
    """The core components wired together without any transport."""

    registry: SessionRegistry
    queues: ParticipantQueues
    history: HistoryStore
    scheduler: FairnessScheduler
    playback: PlaybackController
    clock: FakeClock
    played: list[QueueItem] = field(default_factory=list)
    stops: int = 0

    def played_ids(self) -> list[str]:
        return [item.content_id for item in self.played]

    def check_state(self) -> None:
        state = self.playback.state
        playing = state.status.value == "playing"
        assert playing == (state.current_item is not None) == (state.started_at is not None)
        for participant in self.registry.participants:
            assert participant.wait_seconds >= 0


def build_jukebox(store: KeyValueStore | None = None, seed: int = 0) -> Jukebox:
    registry = SessionRegistry()
    queues = ParticipantQueues()
    history = HistoryStore(store if store is not None else MemoryStore())
    scheduler = FairnessScheduler(registry, queues, history, rng=random.Random(seed))
    clock = FakeClock()
    jukebox: Jukebox

    def on_play(item: QueueItem) -> None:
        jukebox.played.append(item)

    def on_stop() -> None:
        jukebox.stops += 1

    playback = PlaybackController(
        registry, queues, scheduler, history, on_play=on_play, on_stop=on_stop, clock=clock
    )
    jukebox = Jukebox(registry, queues, history, scheduler, playback, clock)
    return jukebox


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def jukebox() -> Jukebox:
    return build_jukebox()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
async def make_server(clock: FakeClock) -> AsyncIterator[Callable[..., JukeboxServer]]:
    servers: list[JukeboxServer] = []
    loop = asyncio.get_running_loop()

    def factory(**kwargs: Any) -> JukeboxServer:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", random.Random(0))
        server = JukeboxServer(loop, "test-server", "Test Jukebox", **kwargs)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        await server.close()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)
