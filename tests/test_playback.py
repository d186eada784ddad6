"""Tests for the playback state machine."""

import pytest

from aiojukebox.models import PlaybackStatus
from aiojukebox.server import HistoryEntry, StoreError

from .conftest import FailingStore, Jukebox, build_jukebox


def _join(jukebox: Jukebox, identity: str, name: str) -> None:
    jukebox.registry.register(f"conn-{identity}", identity, name)


async def _submit(jukebox: Jukebox, identity: str, content_id: str) -> str:
    participant = jukebox.registry.get(identity)
    item_id = jukebox.queues.submit(identity, content_id, participant.display_name)
    await jukebox.playback.on_submit()
    jukebox.check_state()
    return item_id


async def test_two_participants_take_turns(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")

    await _submit(jukebox, "A", "v1")
    await _submit(jukebox, "B", "v2")

    assert jukebox.played_ids() == ["v1"]
    assert jukebox.playback.current_item.content_id == "v1"

    jukebox.clock.advance(10)
    assert await jukebox.playback.track_finished()
    jukebox.check_state()

    assert jukebox.registry.get("B").wait_seconds == 10
    assert jukebox.registry.get("A").wait_seconds == 0
    assert jukebox.played_ids() == ["v1", "v2"]
    assert [e.content_id for e in await jukebox.history.entries()] == ["v1", "v2"]


async def test_credit_and_tie_break_between_three(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    for identity in ("A", "B", "C"):
        _join(jukebox, identity, identity)
        jukebox.queues.submit(identity, f"v-{identity}", identity)
    await jukebox.playback.on_submit()
    assert jukebox.played_ids() == ["v-A"]

    jukebox.clock.advance(7.9)
    await jukebox.playback.track_finished()

    assert jukebox.registry.wait_snapshot() == {"A": 0, "B": 7, "C": 7}
    assert jukebox.played_ids() == ["v-A", "v-B"]

    jukebox.clock.advance(3)
    await jukebox.playback.track_finished()

    assert jukebox.registry.wait_snapshot() == {"A": 3, "B": 7, "C": 10}
    assert jukebox.played_ids() == ["v-A", "v-B", "v-C"]


async def test_submit_without_host_only_queues(jukebox: Jukebox) -> None:
    _join(jukebox, "A", "Alice")
    await _submit(jukebox, "A", "v1")

    assert jukebox.playback.status is PlaybackStatus.IDLE
    assert jukebox.played == []

    jukebox.registry.register_host("host")
    assert await jukebox.playback.on_host_attached()
    assert jukebox.played_ids() == ["v1"]
    assert not jukebox.queues.has_pending("A")


async def test_new_host_is_told_the_current_item(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host-1")
    _join(jukebox, "A", "Alice")
    await _submit(jukebox, "A", "v1")

    jukebox.registry.register_host("host-2")
    assert not await jukebox.playback.on_host_attached()

    assert jukebox.played_ids() == ["v1", "v1"]
    assert jukebox.played[0] is jukebox.played[1]


async def test_finish_while_idle_is_ignored(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    assert not await jukebox.playback.track_finished()
    assert jukebox.stops == 0
    jukebox.check_state()


async def test_history_fallback_after_last_queued_item(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    await _submit(jukebox, "A", "v1")

    # The only history entry is v1 itself, so playback continues from history
    await jukebox.playback.track_finished()
    assert jukebox.playback.current_item.is_history
    assert jukebox.playback.current_item.content_id == "v1"


async def test_nothing_to_play_stays_idle(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")

    assert not await jukebox.playback.on_host_attached()
    assert not await jukebox.playback.on_submit()

    assert jukebox.playback.status is PlaybackStatus.IDLE
    assert jukebox.played == []
    assert jukebox.stops == 0


async def test_skip_by_owner(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")
    await _submit(jukebox, "A", "v1")
    await _submit(jukebox, "B", "v2")

    jukebox.clock.advance(4)
    assert await jukebox.playback.skip("A")

    assert jukebox.registry.get("B").wait_seconds == 4
    assert jukebox.playback.current_item.content_id == "v2"


async def test_skip_by_non_owner_is_denied(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")
    await _submit(jukebox, "A", "v1")
    before = jukebox.playback.state

    assert not await jukebox.playback.skip("B")
    assert not await jukebox.playback.skip(None)

    assert jukebox.playback.state is before
    assert jukebox.played_ids() == ["v1"]


async def test_skip_while_idle_is_denied(jukebox: Jukebox) -> None:
    assert not await jukebox.playback.skip("A")


async def test_anyone_may_skip_history_items(jukebox: Jukebox) -> None:
    await jukebox.history.record(HistoryEntry("old"))
    await jukebox.history.record(HistoryEntry("older"))
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")
    jukebox.registry.apply_waits({"B": 2})
    await jukebox.playback.on_host_attached()
    assert jukebox.playback.current_item is None

    await _submit(jukebox, "A", "v1")
    jukebox.clock.advance(5)
    await jukebox.playback.skip("A")
    assert jukebox.playback.current_item.is_history

    jukebox.clock.advance(60)
    assert await jukebox.playback.skip("B")

    # History playback credits nobody
    assert jukebox.registry.wait_snapshot() == {"A": 0, "B": 7}
    jukebox.check_state()


async def test_store_failure_on_start_changes_nothing(failing_store: FailingStore) -> None:
    jukebox = build_jukebox(failing_store)
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    item_id = jukebox.queues.submit("A", "v1", "Alice")
    failing_store.fail_writes = True

    with pytest.raises(StoreError):
        await jukebox.playback.on_submit()

    assert jukebox.playback.status is PlaybackStatus.IDLE
    assert [item.item_id for item in jukebox.queues.items("A")] == [item_id]
    assert jukebox.played == []
    jukebox.check_state()


async def test_store_failure_on_finish_changes_nothing(failing_store: FailingStore) -> None:
    jukebox = build_jukebox(failing_store)
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")
    await _submit(jukebox, "A", "v1")
    await _submit(jukebox, "B", "v2")
    before = jukebox.playback.state
    jukebox.clock.advance(10)
    failing_store.fail_writes = True

    with pytest.raises(StoreError):
        await jukebox.playback.track_finished()

    assert jukebox.playback.state is before
    assert jukebox.registry.wait_snapshot() == {"A": 0, "B": 0}
    assert [item.content_id for item in jukebox.queues.items("B")] == ["v2"]

    failing_store.fail_writes = False
    await jukebox.playback.track_finished()
    assert jukebox.registry.wait_snapshot() == {"A": 0, "B": 10}
    assert jukebox.played_ids() == ["v1", "v2"]


async def test_history_read_failure_changes_nothing(failing_store: FailingStore) -> None:
    jukebox = build_jukebox(failing_store)
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    _join(jukebox, "B", "Bob")
    await _submit(jukebox, "A", "v1")
    before = jukebox.playback.state
    jukebox.clock.advance(10)
    failing_store.fail_reads = True

    with pytest.raises(StoreError):
        await jukebox.playback.track_finished()

    assert jukebox.playback.state is before
    assert jukebox.registry.get("B").wait_seconds == 0


async def test_nothing_starts_without_host(jukebox: Jukebox) -> None:
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    await _submit(jukebox, "A", "v1")
    await _submit(jukebox, "A", "v2")

    jukebox.registry.unregister("host")
    jukebox.playback.on_host_detached()
    jukebox.clock.advance(3)
    await jukebox.playback.skip("A")

    # Without a host nothing new starts
    assert jukebox.playback.status is PlaybackStatus.IDLE
    assert jukebox.stops == 0
    assert [item.content_id for item in jukebox.queues.items("A")] == ["v2"]
    jukebox.check_state()


async def test_elapsed_seconds_are_floored(jukebox: Jukebox) -> None:
    assert jukebox.playback.elapsed_seconds() == 0
    jukebox.registry.register_host("host")
    _join(jukebox, "A", "Alice")
    await _submit(jukebox, "A", "v1")

    jukebox.clock.advance(2.7)
    assert jukebox.playback.elapsed_seconds() == 2
    assert jukebox.playback.elapsed_seconds(jukebox.clock.now - 10) == 0
