"""
Room bookkeeping and socket fan-out.

``RoomRegistry`` is plain data: which rooms each socket joined. The
``ConnectionManager`` pairs it with the live sockets and their identities
and does the actual sends.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, FrozenSet, Optional, Set

from fastapi.encoders import jsonable_encoder

from ..config import settings
from ..schemas.events import Envelope

logger = logging.getLogger(__name__)

# Server error close code, used when a socket is dropped after a failed send
CLOSE_SEND_FAILED = 1011


def user_room(user_id: str) -> str:
    return f"user-{user_id}"


def conversation_room(conversation_id) -> str:
    return f"conversation-{conversation_id}"


class RoomRegistry:
    """Socket id -> joined rooms, plus the reverse index."""

    def __init__(self):
        self._rooms_by_socket: Dict[str, Set[str]] = defaultdict(set)
        self._sockets_by_room: Dict[str, Set[str]] = defaultdict(set)

    def join(self, socket_id: str, room: str) -> None:
        self._rooms_by_socket[socket_id].add(room)
        self._sockets_by_room[room].add(socket_id)

    def leave(self, socket_id: str, room: str) -> None:
        rooms = self._rooms_by_socket.get(socket_id)
        if rooms is not None:
            rooms.discard(room)
        members = self._sockets_by_room.get(room)
        if members is not None:
            members.discard(socket_id)
            if not members:
                del self._sockets_by_room[room]

    def rooms_of(self, socket_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms_by_socket.get(socket_id, ()))

    def members(self, room: str) -> FrozenSet[str]:
        return frozenset(self._sockets_by_room.get(room, ()))

    def is_member(self, socket_id: str, room: str) -> bool:
        return room in self._rooms_by_socket.get(socket_id, ())

    def forget(self, socket_id: str) -> FrozenSet[str]:
        """Drop a socket from every room, returning the rooms it had joined."""
        rooms = frozenset(self._rooms_by_socket.pop(socket_id, ()))
        for room in rooms:
            members = self._sockets_by_room.get(room)
            if members is not None:
                members.discard(socket_id)
                if not members:
                    del self._sockets_by_room[room]
        return rooms


class ConnectionManager:
    """Live sockets, their identities and room membership."""

    def __init__(self, send_timeout: Optional[float] = None):
        self.active_connections: Dict[str, Any] = {}
        self.identities: Dict[str, Any] = {}
        self.rooms = RoomRegistry()
        self.send_timeout = send_timeout or settings.WS_SEND_TIMEOUT_SECONDS
        # Guards the three maps above; sends happen outside the lock.
        # Created lazily per event loop so test clients with their own loops can share the manager.
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop_id: Optional[int] = None

    def _get_lock(self) -> asyncio.Lock:
        loop_id = id(asyncio.get_running_loop())
        if self._lock is None or self._lock_loop_id != loop_id:
            self._lock = asyncio.Lock()
            self._lock_loop_id = loop_id
        return self._lock

    async def connect(self, socket_id: str, websocket, identity) -> None:
        async with self._get_lock():
            self.active_connections[socket_id] = websocket
            self.identities[socket_id] = identity
            self.rooms.join(socket_id, identity.personal_room)

    async def disconnect(self, socket_id: str) -> FrozenSet[str]:
        async with self._get_lock():
            self.active_connections.pop(socket_id, None)
            self.identities.pop(socket_id, None)
            return self.rooms.forget(socket_id)

    def identity(self, socket_id: str):
        return self.identities.get(socket_id)

    async def join(self, socket_id: str, room: str) -> None:
        async with self._get_lock():
            if socket_id in self.active_connections:
                self.rooms.join(socket_id, room)

    async def leave(self, socket_id: str, room: str) -> None:
        async with self._get_lock():
            self.rooms.leave(socket_id, room)

    async def emit(self, socket_id: str, event, data: Optional[Dict[str, Any]] = None) -> bool:
        """Send one event to one socket. Returns False if the socket is gone."""
        websocket = self.active_connections.get(socket_id)
        if websocket is None:
            return False

        frame = jsonable_encoder(Envelope.create(event, data).model_dump())
        try:
            await asyncio.wait_for(websocket.send_json(frame), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.warning("Dropping socket %s after failed send: %s", socket_id, e)
            await self.drop(socket_id, websocket)
            return False

    async def drop(self, socket_id: str, websocket) -> None:
        """Unregister a socket and close it; the peer sees the close and reconnects."""
        await self.disconnect(socket_id)
        try:
            await asyncio.wait_for(websocket.close(code=CLOSE_SEND_FAILED), timeout=self.send_timeout)
        except Exception as e:
            logger.debug("Close of dropped socket %s failed: %s", socket_id, e)

    async def emit_to_room(
        self,
        room: str,
        event,
        data: Optional[Dict[str, Any]] = None,
        exclude: Optional[str] = None
    ) -> int:
        """Send to every socket in ``room`` except ``exclude``. Returns delivery count."""
        async with self._get_lock():
            targets = [sid for sid in self.rooms.members(room) if sid != exclude]

        delivered = 0
        for socket_id in targets:
            if await self.emit(socket_id, event, data):
                delivered += 1
        return delivered
