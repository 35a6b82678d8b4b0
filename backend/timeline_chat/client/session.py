"""
Client connection lifecycle for the messaging socket.

    IDLE -> CONNECTING -> AUTHENTICATING -> CONNECTED
    CONNECTED -> RECONNECTING -> CONNECTING ... | DISCONNECTED

Once the transport is up the server may push backlog (notifications, joined
conversations) before its ``authenticated`` event has been handled. Those
events are held in arrival order and replayed through the normal handler as
soon as the identity is known, so nothing is lost, reordered or processed
against an unknown user.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .store import ClientMessageStore, ConversationKey, conversation_key

logger = logging.getLogger(__name__)

Sender = Callable[[str, dict], Awaitable[None]]
Listener = Callable[[str, dict], None]


class ConnectionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    AUTHENTICATING = "AUTHENTICATING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    DISCONNECTED = "DISCONNECTED"


# Events that carry message state and must wait for authentication
QUEUED_EVENTS = frozenset({
    "new-message",
    "message-notification",
    "conversation_joined",
    "messages-read",
})


class InvalidTransition(RuntimeError):
    pass


class ClientSession:
    """Transport-agnostic client state machine with a pre-auth message queue."""

    def __init__(
        self,
        sender: Optional[Sender] = None,
        store: Optional[ClientMessageStore] = None,
        max_reconnect_attempts: int = 5
    ):
        self.state = ConnectionState.IDLE
        self.user_id: Optional[str] = None
        self.user_type: Optional[str] = None
        self.timeline_id: Optional[str] = None

        self.store = store or ClientMessageStore()
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_attempts = 0

        self._sender = sender
        self._queue: List[Tuple[str, dict]] = []
        self._auth_future: Optional[asyncio.Future] = None
        self._joined: Set[ConversationKey] = set()
        self._rooms_to_restore: Set[ConversationKey] = set()
        self._listeners: Dict[str, List[Listener]] = {}

    # ============= Lifecycle =============

    def attach(self, sender: Sender) -> None:
        self._sender = sender

    def start_connecting(self) -> None:
        if self.state not in (ConnectionState.IDLE, ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED):
            raise InvalidTransition(f"Cannot connect from {self.state.value}")
        self.state = ConnectionState.CONNECTING

    def on_transport_connected(self) -> None:
        """Transport is up; identity is not known yet."""
        if self.state != ConnectionState.CONNECTING:
            raise InvalidTransition(f"Transport connected while {self.state.value}")
        self.state = ConnectionState.AUTHENTICATING
        self._auth_future = asyncio.get_running_loop().create_future()
        logger.debug("Transport connected, queueing message events until authenticated")

    def on_transport_closed(self) -> ConnectionState:
        """Transport dropped. Returns the resulting state."""
        if self.state == ConnectionState.CONNECTED and self._joined:
            # Remember rooms for the next successful connection
            self._rooms_to_restore = set(self._joined)
        self._joined.clear()

        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(ConnectionError("Connection closed before authentication"))
            # Mark retrieved so an unawaited future does not warn
            self._auth_future.exception()
        self._auth_future = None
        if self._queue:
            logger.debug("Discarding %d events queued on a connection that never authenticated", len(self._queue))
        self._queue.clear()

        if self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            self.state = ConnectionState.RECONNECTING
        else:
            self.state = ConnectionState.DISCONNECTED
        return self.state

    @property
    def is_authenticated(self) -> bool:
        return self._auth_future is not None and self._auth_future.done() and not self._auth_future.exception()

    async def wait_authenticated(self, timeout: Optional[float] = None) -> None:
        if self._auth_future is None:
            raise InvalidTransition(f"No connection in progress ({self.state.value})")
        await asyncio.wait_for(asyncio.shield(self._auth_future), timeout=timeout)

    # ============= Inbound =============

    async def on_event(self, event: str, data: dict) -> None:
        """Entry point for every server event, in arrival order."""
        if event == "authenticated":
            await self._complete_authentication(data)
            return

        if event in QUEUED_EVENTS and not self.is_authenticated:
            self._queue.append((event, data))
            return

        self._process(event, data)

    async def _complete_authentication(self, data: dict) -> None:
        if self.state != ConnectionState.AUTHENTICATING:
            logger.warning("Ignoring authenticated event while %s", self.state.value)
            return

        self.user_id = data.get("userId")
        self.user_type = data.get("userType")
        self.timeline_id = data.get("timelineId")

        # Drain before resolving so queued events come ahead of anything new
        queued, self._queue = self._queue, []
        try:
            for event, payload in queued:
                try:
                    self._process(event, payload)
                except Exception:
                    logger.exception("Skipping queued %s event that failed to apply", event)
        finally:
            self._auth_future.set_result(True)
            self.state = ConnectionState.CONNECTED
            self.reconnect_attempts = 0
        logger.info("Authenticated as %s %s (%d queued events replayed)", self.user_type, self.user_id, len(queued))

        await self._restore_rooms()

    def _process(self, event: str, data: dict) -> None:
        if event == "new-message":
            self.store.add_message(data)
        elif event == "message-notification":
            key = conversation_key(data["conversationId"], data.get("propertyId"))
            if key not in self._joined:
                self.store.increment_unread(*key)
        elif event == "conversation_joined":
            key = conversation_key(data["conversationId"], data.get("propertyId"))
            self.store.set_history(key[0], key[1], data.get("messages", []))
            self.store.clear_unread(*key)
        elif event == "messages-read":
            self.store.mark_read_by(data["conversationId"], data.get("userType"), data.get("readAt"))

        for listener in self._listeners.get(event, ()):
            listener(event, data)
        for listener in self._listeners.get("*", ()):
            listener(event, data)

    def on(self, event: str, listener: Listener) -> None:
        """Register a listener; ``"*"`` receives every processed event."""
        self._listeners.setdefault(event, []).append(listener)

    # ============= Outbound =============

    async def _emit(self, event: str, data: dict) -> None:
        if self._sender is None:
            raise InvalidTransition("No transport attached")
        await self._sender(event, data)

    async def join_conversation(self, conversation_id: int, property_id: Optional[str] = None) -> None:
        self._joined.add(conversation_key(conversation_id, property_id))
        await self._emit("join-conversation", {"conversationId": conversation_id, "propertyId": property_id})

    async def leave_conversation(self, conversation_id: int, property_id: Optional[str] = None) -> None:
        self._joined.discard(conversation_key(conversation_id, property_id))
        await self._emit("leave-conversation", {"conversationId": conversation_id})

    async def send_message(
        self,
        content: str,
        conversation_id: Optional[int] = None,
        property_id: Optional[str] = None,
        timeline_id: Optional[str] = None
    ) -> None:
        payload = {"content": content, "propertyId": property_id}
        if conversation_id is not None:
            payload["conversationId"] = conversation_id
        if timeline_id is not None:
            payload["timelineId"] = timeline_id
        await self._emit("send-message", payload)

    async def mark_read(self, conversation_id: int, property_id: Optional[str] = None) -> None:
        self.store.clear_unread(conversation_id, property_id)
        await self._emit("mark-messages-read", {"conversationId": conversation_id})

    @property
    def joined_conversations(self) -> Set[ConversationKey]:
        return set(self._joined)

    async def _restore_rooms(self) -> None:
        # Clear first so a later reconnect cannot replay the same set
        rooms, self._rooms_to_restore = self._rooms_to_restore, set()
        for conversation_id, property_id in sorted(rooms, key=lambda k: (k[0], k[1] or "")):
            logger.debug("Rejoining conversation %s (%s)", conversation_id, property_id or "general")
            await self.join_conversation(conversation_id, property_id)
