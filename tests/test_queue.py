"""Tests for per-participant queues."""

import pytest

from aiojukebox.server import ParticipantQueues


def test_items_are_served_in_submission_order() -> None:
    queues = ParticipantQueues()
    first = queues.submit("A", "v1", "Alice")
    second = queues.submit("A", "v2", "Alice", title="Second")

    assert [item.item_id for item in queues.items("A")] == [first, second]
    assert queues.peek("A").content_id == "v1"
    assert queues.dequeue("A").item_id == first
    assert queues.dequeue("A").title == "Second"
    assert not queues.has_pending("A")


def test_item_ids_are_unique() -> None:
    queues = ParticipantQueues()
    ids = {queues.submit("A", "same", "Alice") for _ in range(50)}
    assert len(ids) == 50


def test_withdraw_only_touches_own_queue() -> None:
    queues = ParticipantQueues()
    bobs_item = queues.submit("B", "v2", "Bob")
    queues.submit("A", "v1", "Alice")

    assert not queues.withdraw("A", bobs_item)
    assert [item.item_id for item in queues.items("B")] == [bobs_item]

    assert queues.withdraw("B", bobs_item)
    assert queues.items("B") == []
    assert not queues.withdraw("B", bobs_item)


def test_dequeue_from_empty_queue_raises() -> None:
    queues = ParticipantQueues()
    with pytest.raises(LookupError):
        queues.dequeue("A")


def test_drop_returns_pending_items() -> None:
    queues = ParticipantQueues()
    queues.submit("A", "v1", "Alice")
    queues.submit("B", "v2", "Bob")

    dropped = queues.drop("A")

    assert [item.content_id for item in dropped] == ["v1"]
    assert queues.identities() == ["B"]
    assert queues.drop("A") == []
