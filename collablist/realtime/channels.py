"""Connection registry and room fan-out for the realtime channel.

One `ChannelManager` is created per application (see `main.lifespan`) and torn
down on shutdown. Delivery is best-effort and not persisted: a connection that
is gone when an event is sent simply misses it and re-fetches on reconnect.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Set

from ..events import list_room, user_room

logger = logging.getLogger(__name__)


class Connection:
    """An authenticated socket plus the rooms it currently sits in."""

    def __init__(self, websocket: Any, user_id: int):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.rooms: Set[str] = set()

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} user={self.user_id}>"


class ChannelManager:
    def __init__(self) -> None:
        self._rooms: Dict[str, Set[Connection]] = defaultdict(set)
        self._connections: Dict[str, Connection] = {}
        self._running = False

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        logger.info("channel manager started")

    async def shutdown(self) -> None:
        self._running = False
        connections = list(self._connections.values())
        for conn in connections:
            try:
                await conn.websocket.close(code=1001)
            except Exception:  # already closed by the peer
                logger.debug("close failed for %r", conn, exc_info=True)
            self.unregister(conn)
        logger.info("channel manager stopped connections=%s", len(connections))

    @property
    def running(self) -> bool:
        return self._running

    # --- membership --------------------------------------------------------

    def register(self, conn: Connection) -> None:
        """Track a new connection and put it in its principal's personal room."""
        self._connections[conn.id] = conn
        self._add(conn, user_room(conn.user_id))
        logger.debug("connected %r", conn)

    def unregister(self, conn: Connection) -> None:
        for room in list(conn.rooms):
            self._discard(conn, room)
        self._connections.pop(conn.id, None)
        logger.debug("disconnected %r", conn)

    def join(self, conn: Connection, list_id: int) -> None:
        self._add(conn, list_room(list_id))

    def leave(self, conn: Connection, list_id: int) -> None:
        self._discard(conn, list_room(list_id))

    def evict(self, list_id: int, user_id: int) -> int:
        """Drop every connection of `user_id` from the list's room."""
        room = list_room(list_id)
        victims = [c for c in self._rooms.get(room, ()) if c.user_id == user_id]
        for conn in victims:
            self._discard(conn, room)
        return len(victims)

    def close_room(self, list_id: int) -> None:
        room = list_room(list_id)
        for conn in list(self._rooms.get(room, ())):
            self._discard(conn, room)

    def room_members(self, room: str) -> List[Connection]:
        return list(self._rooms.get(room, ()))

    def connection_count(self) -> int:
        return len(self._connections)

    def _add(self, conn: Connection, room: str) -> None:
        self._rooms[room].add(conn)
        conn.rooms.add(room)

    def _discard(self, conn: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._rooms[room]
        conn.rooms.discard(room)

    # --- delivery ----------------------------------------------------------

    async def emit(
        self,
        rooms: Iterable[str],
        event: str,
        payload: Any,
        *,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send once to every connection in any of `rooms`. Returns deliveries."""
        targets: Dict[str, Connection] = {}
        for room in rooms:
            for conn in self._rooms.get(room, ()):
                if conn is not exclude:
                    targets[conn.id] = conn
        if not targets:
            return 0
        results = await asyncio.gather(
            *(conn.send(event, payload) for conn in targets.values()),
            return_exceptions=True,
        )
        delivered = 0
        for conn, result in zip(targets.values(), results):
            if isinstance(result, BaseException):
                logger.warning("delivery failed event=%s conn=%r error=%s", event, conn, result)
                self.unregister(conn)
            else:
                delivered += 1
        return delivered

    async def broadcast(self, list_id: int, event: str, payload: Any, *, exclude: Optional[Connection] = None) -> int:
        return await self.emit([list_room(list_id)], event, payload, exclude=exclude)

    async def send_to_user(self, user_id: int, event: str, payload: Any) -> int:
        return await self.emit([user_room(user_id)], event, payload)
