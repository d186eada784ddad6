"""Tests for fair selection of the next item."""

from aiojukebox.server import FairnessScheduler, HistoryEntry, QueueItem

from .conftest import Jukebox


def _register(jukebox: Jukebox, *identities: str) -> None:
    for identity in identities:
        jukebox.registry.register(f"conn-{identity}", identity, identity.lower())


async def test_equal_waits_follow_registration_order(jukebox: Jukebox) -> None:
    _register(jukebox, "C", "A", "B")
    for identity in ("A", "B", "C"):
        jukebox.queues.submit(identity, f"v-{identity}", identity)

    selected = await jukebox.scheduler.select_next()

    assert selected is not None
    assert selected.content_id == "v-C"
    assert [p.identity for p in jukebox.scheduler.candidates()] == ["C", "A", "B"]


async def test_longest_wait_goes_first(jukebox: Jukebox) -> None:
    _register(jukebox, "A", "B")
    jukebox.queues.submit("A", "a1", "A")
    jukebox.queues.submit("B", "b1", "B")
    jukebox.registry.apply_waits({"B": 3})

    selected = await jukebox.scheduler.select_next()

    assert selected.content_id == "b1"


async def test_selection_does_not_dequeue(jukebox: Jukebox) -> None:
    _register(jukebox, "A")
    item_id = jukebox.queues.submit("A", "a1", "A")

    first = await jukebox.scheduler.select_next()
    second = await jukebox.scheduler.select_next()

    assert first.item_id == second.item_id == item_id
    assert jukebox.queues.has_pending("A")


async def test_participants_without_items_are_skipped(jukebox: Jukebox) -> None:
    _register(jukebox, "A", "B")
    jukebox.registry.apply_waits({"A": 100})
    jukebox.queues.submit("B", "b1", "B")

    selected = await jukebox.scheduler.select_next()

    assert selected.owner_id == "B"


async def test_falls_back_to_single_history_entry(jukebox: Jukebox) -> None:
    await jukebox.history.record(HistoryEntry("cid", "Old song"))

    for _ in range(5):
        selected = await jukebox.scheduler.select_next()
        assert selected is not None
        assert selected.content_id == "cid"
        assert selected.is_history
        assert selected.owner_id is None
        assert selected.title == "Old song"


async def test_nothing_to_select(jukebox: Jukebox) -> None:
    assert await jukebox.scheduler.select_next() is None


def test_credit_skips_owner() -> None:
    finished = QueueItem("i1", "v1", owner_id="A", owner_name="Alice")

    waits = FairnessScheduler.credit({"A": 2, "B": 0, "C": 5}, finished, 7)

    assert waits == {"A": 2, "B": 7, "C": 12}


def test_history_items_credit_nobody() -> None:
    finished = QueueItem("i1", "v1", owner_id=None, owner_name=None, is_history=True)
    assert FairnessScheduler.credit({"A": 1}, finished, 30) == {"A": 1}
    assert FairnessScheduler.credit({"A": 1}, None, 30) == {"A": 1}
