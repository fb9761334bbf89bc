"""Registry of live realtime connections and their canteen room memberships.

Rooms are plain sets of connection ids keyed by canteen id. A room exists only
while it has members. The registry runs on the event loop thread only, so it
holds no locks.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from canteen_menu_sync.observability import metrics

logger = logging.getLogger(__name__)

Sender = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Connection:
    """State kept per connection.

    Attributes:
        connection_id: Transport-assigned identifier
        send: Coroutine function delivering one outbound frame, None if not attached
        rooms: Canteen ids this connection is subscribed to
        global_feed: Whether the connection receives the unscoped global feed
        last_seen: Monotonic time of the last inbound activity
    """

    connection_id: str
    send: Sender | None = None
    rooms: set[str] = field(default_factory=set)
    global_feed: bool = False
    last_seen: float = 0.0


class ConnectionRegistry:
    """Tracks connections, room membership, and delivers frames to rooms."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty registry.

        Args:
            clock: Monotonic time source used for heartbeat bookkeeping
        """
        self._clock = clock
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}

    def register(self, connection_id: str, send: Sender) -> Connection:
        """Attach a transport sender to a connection id.

        Args:
            connection_id: Transport-assigned identifier
            send: Coroutine function that delivers one frame to the client

        Returns:
            The connection record
        """
        connection = self._ensure(connection_id)
        if connection.send is None:
            metrics.record_connection_change(1)
        connection.send = send
        connection.last_seen = self._clock()
        logger.info(f"Connection registered: {connection_id}")
        return connection

    def join(self, connection_id: str, canteen_id: str) -> bool:
        """Subscribe a connection to a canteen room.

        Joining a room already joined is a no-op.

        Returns:
            True if membership changed, False otherwise
        """
        connection = self._ensure(connection_id)
        if canteen_id in connection.rooms:
            return False

        connection.rooms.add(canteen_id)
        self._rooms.setdefault(canteen_id, set()).add(connection_id)
        logger.info(f"Connection {connection_id} joined canteen-{canteen_id}")
        return True

    def leave(self, connection_id: str, canteen_id: str) -> bool:
        """Unsubscribe a connection from a canteen room.

        Leaving a room not joined is a no-op.

        Returns:
            True if membership changed, False otherwise
        """
        connection = self._connections.get(connection_id)
        if connection is None or canteen_id not in connection.rooms:
            return False

        connection.rooms.discard(canteen_id)
        self._remove_from_room(connection_id, canteen_id)
        logger.info(f"Connection {connection_id} left canteen-{canteen_id}")
        return True

    def subscribe_global(self, connection_id: str) -> None:
        """Deliver the unscoped global feed to this connection."""
        self._ensure(connection_id).global_feed = True

    def unsubscribe_global(self, connection_id: str) -> None:
        """Stop delivering the global feed to this connection."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.global_feed = False

    def on_disconnect(self, connection_id: str) -> set[str]:
        """Forget a connection and remove it from every room it was in.

        Safe to call for unknown or already removed connections.

        Returns:
            Canteen ids the connection was a member of
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return set()

        for canteen_id in connection.rooms:
            self._remove_from_room(connection_id, canteen_id)

        if connection.send is not None:
            metrics.record_connection_change(-1)

        logger.info(f"Connection {connection_id} disconnected, left {len(connection.rooms)} room(s)")
        return set(connection.rooms)

    def touch(self, connection_id: str) -> None:
        """Record inbound activity (heartbeat) for a connection."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_seen = self._clock()

    def reap_stale(self, timeout_seconds: float) -> list[str]:
        """Disconnect every connection silent for longer than the timeout.

        Args:
            timeout_seconds: Maximum allowed silence

        Returns:
            Ids of the reaped connections
        """
        cutoff = self._clock() - timeout_seconds
        stale = [
            connection_id
            for connection_id, connection in self._connections.items()
            if connection.last_seen < cutoff
        ]
        for connection_id in stale:
            logger.warning(f"Reaping silent connection {connection_id}")
            self.on_disconnect(connection_id)
        return stale

    def members(self, canteen_id: str) -> frozenset[str]:
        """Connection ids currently subscribed to a canteen room."""
        return frozenset(self._rooms.get(canteen_id, ()))

    def rooms_of(self, connection_id: str) -> frozenset[str]:
        """Canteen ids a connection is subscribed to."""
        connection = self._connections.get(connection_id)
        return frozenset(connection.rooms) if connection else frozenset()

    def is_registered(self, connection_id: str) -> bool:
        """Whether the connection is still known to the registry."""
        return connection_id in self._connections

    def has_room(self, canteen_id: str) -> bool:
        """Whether a room currently exists (has at least one member)."""
        return canteen_id in self._rooms

    @property
    def connection_count(self) -> int:
        """Number of connections with an attached sender."""
        return sum(1 for c in self._connections.values() if c.send is not None)

    async def send_to_room(self, canteen_id: str, frame: dict[str, Any]) -> int:
        """Deliver a frame to every member of a canteen room.

        Sending to an empty or unknown room is a no-op. A connection whose
        sender fails is treated as dropped and disconnected.

        Returns:
            Number of connections the frame was delivered to
        """
        targets = [self._connections[cid] for cid in self.members(canteen_id)]
        return await self._deliver(targets, frame)

    async def send_global(self, frame: dict[str, Any]) -> int:
        """Deliver a frame to every connection subscribed to the global feed.

        Returns:
            Number of connections the frame was delivered to
        """
        targets = [c for c in self._connections.values() if c.global_feed]
        return await self._deliver(targets, frame)

    async def _deliver(self, targets: list[Connection], frame: dict[str, Any]) -> int:
        delivered = 0
        dropped: list[str] = []

        for connection in targets:
            if connection.send is None:
                continue
            try:
                await connection.send(frame)
                delivered += 1
            except Exception as e:
                logger.warning(f"Send to {connection.connection_id} failed, dropping it: {e}")
                dropped.append(connection.connection_id)

        for connection_id in dropped:
            self.on_disconnect(connection_id)

        return delivered

    def _ensure(self, connection_id: str) -> Connection:
        connection = self._connections.get(connection_id)
        if connection is None:
            connection = Connection(connection_id=connection_id, last_seen=self._clock())
            self._connections[connection_id] = connection
        return connection

    def _remove_from_room(self, connection_id: str, canteen_id: str) -> None:
        members = self._rooms.get(canteen_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[canteen_id]
