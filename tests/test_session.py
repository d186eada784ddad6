"""Tests for the session registry."""

import pytest

from aiojukebox.server import SessionRegistry


def test_register_creates_participants_in_order() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")
    registry.register("c2", "B", "Bob")

    assert [p.identity for p in registry.participants] == ["A", "B"]
    assert registry.resolve("c2") == "B"
    assert registry.get("A").wait_seconds == 0


def test_reregister_keeps_wait_and_order() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")
    registry.register("c2", "B", "Bob")
    registry.apply_waits({"A": 12})

    participant = registry.register("c3", "A", "Alice Cooper")

    assert participant.order == 0
    assert participant.wait_seconds == 12
    assert participant.display_name == "Alice Cooper"
    assert participant.connections == {"c1", "c3"}


def test_connection_moves_to_new_identity() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")
    registry.register("c1", "B", "Bob")

    assert registry.resolve("c1") == "B"
    assert not registry.is_connected("A")
    assert registry.is_connected("B")


def test_single_host_binding() -> None:
    registry = SessionRegistry()
    assert registry.register_host("h1") is None
    assert registry.register_host("h2") == "h1"
    assert registry.host_connection == "h2"

    registry.restore_host("h1")
    assert registry.host_connection == "h1"

    assert registry.unregister("h1") is None
    assert not registry.has_host


def test_unregister_keeps_participant() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")

    assert registry.unregister("c1") == "A"
    assert registry.resolve("c1") is None
    assert registry.get("A") is not None
    assert not registry.is_connected("A")


def test_remove_participant_drops_sessions() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")

    registry.remove_participant("A")

    assert registry.get("A") is None
    assert registry.resolve("c1") is None
    assert registry.wait_snapshot() == {}


def test_waits_never_decrease() -> None:
    registry = SessionRegistry()
    registry.register("c1", "A", "Alice")
    registry.apply_waits({"A": 5, "gone": 3})

    with pytest.raises(ValueError):
        registry.apply_waits({"A": 4})
    assert registry.get("A").wait_seconds == 5
