"""Bookkeeping of connections, participants and the host binding."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """A submitter of content, identified by an opaque identity."""

    identity: str
    display_name: str
    order: int
    """Registration sequence number, used to break ties between equal wait times."""
    wait_seconds: int = 0
    """Seconds other participants' items occupied playback since this one registered."""
    connections: set[str] = field(default_factory=set)
    """Ids of the live connections bound to this participant."""


class SessionRegistry:
    """
    Maps live connections to participants and tracks the single host connection.

    Participants outlive their connections; whether they are forgotten once the
    last connection closes is decided by the caller through remove_participant().
    """

    _participants: dict[str, Participant]
    """Known participants by identity, in registration order."""
    _sessions: dict[str, str]
    """Mapping of connection ids to participant identities."""
    _host_connection: str | None
    """Connection id of the host, None while no host is attached."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._participants = {}
        self._sessions = {}
        self._host_connection = None
        self._order = itertools.count()

    def register(self, connection_id: str, identity: str, display_name: str) -> Participant:
        """
        Bind a connection to a participant, creating the participant if needed.

        Re-registering an identity updates its display name and keeps its wait time
        and registration order. A connection previously bound to another identity is
        moved over.
        """
        previous = self._sessions.get(connection_id)
        if previous is not None and previous != identity:
            self._unbind(connection_id, previous)

        participant = self._participants.get(identity)
        if participant is None:
            participant = Participant(identity, display_name, order=next(self._order))
            self._participants[identity] = participant
            logger.info("Registered participant %s (%s)", identity, display_name)
        elif participant.display_name != display_name:
            logger.debug(
                "Participant %s renamed from %s to %s",
                identity,
                participant.display_name,
                display_name,
            )
            participant.display_name = display_name

        participant.connections.add(connection_id)
        self._sessions[connection_id] = identity
        return participant

    def register_host(self, connection_id: str) -> str | None:
        """
        Make ``connection_id`` the host, silently replacing any previous host.

        Returns:
            The connection id of the replaced host, if any.
        """
        previous = self._host_connection
        self._host_connection = connection_id
        if previous is not None and previous != connection_id:
            logger.info("Host connection %s replaced by %s", previous, connection_id)
        return previous

    def restore_host(self, connection_id: str | None) -> None:
        """Undo register_host() by rebinding the host role to ``connection_id``."""
        self._host_connection = connection_id

    def resolve(self, connection_id: str) -> str | None:
        """Return the identity bound to ``connection_id``."""
        return self._sessions.get(connection_id)

    def unregister(self, connection_id: str) -> str | None:
        """
        Remove all bindings of ``connection_id``.

        Returns:
            The identity the connection was bound to, if any.
        """
        if self._host_connection == connection_id:
            logger.info("Host connection %s detached", connection_id)
            self._host_connection = None
        identity = self._sessions.pop(connection_id, None)
        if identity is not None:
            self._unbind(connection_id, identity)
        return identity

    def _unbind(self, connection_id: str, identity: str) -> None:
        participant = self._participants.get(identity)
        if participant is not None:
            participant.connections.discard(connection_id)

    def remove_participant(self, identity: str) -> None:
        """Forget a participant together with its wait time."""
        participant = self._participants.pop(identity, None)
        if participant is None:
            return
        for connection_id in participant.connections:
            self._sessions.pop(connection_id, None)
        logger.info("Removed participant %s", identity)

    def get(self, identity: str) -> Participant | None:
        """Return the participant with the given identity."""
        return self._participants.get(identity)

    def is_connected(self, identity: str) -> bool:
        """Whether at least one live connection is bound to ``identity``."""
        participant = self._participants.get(identity)
        return participant is not None and bool(participant.connections)

    @property
    def participants(self) -> list[Participant]:
        """All known participants in registration order."""
        return list(self._participants.values())

    @property
    def host_connection(self) -> str | None:
        """Connection id of the host, None while no host is attached."""
        return self._host_connection

    @property
    def has_host(self) -> bool:
        """Whether a host is attached."""
        return self._host_connection is not None

    def wait_snapshot(self) -> dict[str, int]:
        """Return a copy of all wait counters by identity."""
        return {identity: p.wait_seconds for identity, p in self._participants.items()}

    def apply_waits(self, waits: Mapping[str, int]) -> None:
        """Commit wait counters computed from a snapshot."""
        for identity, wait_seconds in waits.items():
            participant = self._participants.get(identity)
            if participant is None:
                continue
            if wait_seconds < participant.wait_seconds:
                raise ValueError(f"Wait time of {identity} must not decrease")
            participant.wait_seconds = wait_seconds
