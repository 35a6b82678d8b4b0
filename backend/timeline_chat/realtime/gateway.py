"""
Socket event routing for conversations.

Each inbound event runs in its own database session. Broadcasts are only
issued after the service call has committed, and every handler failure is
reported to the sender alone as a single ``error`` event.
"""

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PayloadError

from ..database import AsyncSessionLocal
from ..errors import AuthorizationError, MessagingError, NotFoundError, ValidationError
from ..schemas.events import (
    ClientEvent,
    ServerEvent,
    HandshakeAuth,
    JoinConversationPayload,
    ConversationRefPayload,
    SendMessagePayload
)
from ..schemas.message import MessageResponse
from ..schemas.scope import scope_for, ConversationScope
from ..services.conversation_store import AGENT
from ..services.messaging_service import MessagingService
from ..services.timeline_lookup import TimelineDirectory
from .authenticator import ConnectionAuthenticator, ConnectionIdentity
from .rooms import ConnectionManager, conversation_room, user_room

logger = logging.getLogger(__name__)


class MessagingGateway:
    """Bridges socket events to the messaging service and back out to rooms."""

    def __init__(
        self,
        manager: Optional[ConnectionManager] = None,
        session_factory: Optional[Callable] = None,
        authenticator: Optional[ConnectionAuthenticator] = None
    ):
        self.manager = manager or ConnectionManager()
        self.session_factory = session_factory or AsyncSessionLocal
        self.authenticator = authenticator or ConnectionAuthenticator()

        self._handlers = {
            ClientEvent.JOIN_CONVERSATION.value: self.handle_join_conversation,
            ClientEvent.LEAVE_CONVERSATION.value: self.handle_leave_conversation,
            ClientEvent.SEND_MESSAGE.value: self.handle_send_message,
            ClientEvent.TYPING_START.value: self.handle_typing_start,
            ClientEvent.TYPING_STOP.value: self.handle_typing_stop,
            ClientEvent.MARK_MESSAGES_READ.value: self.handle_mark_messages_read,
            ClientEvent.PING.value: self.handle_ping,
        }

    # ============= Connection lifecycle =============

    async def authenticate(self, auth: HandshakeAuth) -> ConnectionIdentity:
        async with self.session_factory() as db:
            return await self.authenticator.authenticate(auth, db)

    async def connect(self, socket_id: str, websocket, identity: ConnectionIdentity) -> None:
        """Register an authenticated socket and confirm its identity to it."""
        await self.manager.connect(socket_id, websocket, identity)
        await self.manager.emit(socket_id, ServerEvent.AUTHENTICATED, identity.to_payload())
        logger.info("%s %s connected as socket %s", identity.user_type, identity.user_id, socket_id)

    async def disconnect(self, socket_id: str) -> None:
        identity = self.manager.identity(socket_id)
        await self.manager.disconnect(socket_id)
        if identity is not None:
            logger.info("%s %s disconnected (socket %s)", identity.user_type, identity.user_id, socket_id)

    # ============= Dispatch =============

    async def dispatch(self, socket_id: str, event: str, data: Optional[Dict[str, Any]]) -> None:
        """Run the handler for ``event``; never raises."""
        identity = self.manager.identity(socket_id)
        if identity is None:
            # Not authenticated (or already gone): reject rather than defer
            await self.manager.emit(socket_id, ServerEvent.ERROR, {"message": "Authentication required"})
            return

        handler = self._handlers.get(event)
        if handler is None:
            await self._emit_error(socket_id, f"Unknown event: {event}")
            return

        try:
            await handler(socket_id, identity, data or {})
        except PayloadError as e:
            logger.info("Invalid %s payload from socket %s: %s", event, socket_id, e.errors())
            await self._emit_error(socket_id, "Invalid payload")
        except MessagingError as e:
            logger.info("%s failed for %s %s: %s", event, identity.user_type, identity.user_id, e.message)
            await self._emit_error(socket_id, e.message)
        except Exception:
            logger.exception("Unhandled error in %s handler for socket %s", event, socket_id)
            await self._emit_error(socket_id, "Internal server error")

    async def _emit_error(self, socket_id: str, message: str) -> None:
        await self.manager.emit(socket_id, ServerEvent.ERROR, {"message": message})

    # ============= Handlers =============

    async def handle_join_conversation(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        payload = JoinConversationPayload.model_validate(data)

        async with self.session_factory() as db:
            service = MessagingService(db)
            conversation = await service.get_conversation(payload.conversation_id, identity.user_id, identity.user_type)
            await service.mark_messages_as_read(conversation.id, identity.user_id, identity.user_type)
            page = await service.get_messages(conversation.id, identity.user_id, identity.user_type)

        room = conversation_room(conversation.id)
        await self.manager.join(socket_id, room)

        # Stored scope wins over whatever the client claimed
        property_id = conversation.property_id

        await self.manager.emit(socket_id, ServerEvent.CONVERSATION_JOINED, {
            "conversationId": conversation.id,
            "messages": [m.model_dump(by_alias=True) for m in page.messages],
            "propertyId": property_id,
            "hasMore": page.has_more,
            "total": page.total,
        })
        await self.manager.emit_to_room(room, ServerEvent.USER_JOINED, {
            "userId": identity.user_id,
            "userType": identity.user_type,
            "conversationId": conversation.id,
        }, exclude=socket_id)

        logger.info(
            "%s %s joined conversation %s (%s)",
            identity.user_type, identity.user_id, conversation.id, property_id or "general"
        )

    async def handle_leave_conversation(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        payload = ConversationRefPayload.model_validate(data)
        room = conversation_room(payload.conversation_id)

        await self.manager.leave(socket_id, room)
        await self.manager.emit_to_room(room, ServerEvent.USER_LEFT, {
            "userId": identity.user_id,
            "userType": identity.user_type,
            "conversationId": payload.conversation_id,
        }, exclude=socket_id)

        logger.info("%s %s left conversation %s", identity.user_type, identity.user_id, payload.conversation_id)

    async def handle_send_message(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        payload = SendMessagePayload.model_validate(data)
        scope = scope_for(payload.property_id)

        async with self.session_factory() as db:
            service = MessagingService(db)

            if payload.conversation_id is not None:
                try:
                    message = await service.send_message(
                        payload.conversation_id, identity.user_id, identity.user_type, payload.content
                    )
                except NotFoundError as e:
                    has_timeline = payload.timeline_id or identity.timeline_id
                    if e.resource_type != "Conversation" or not has_timeline:
                        raise
                    logger.info("Conversation %s not found, auto-creating for %s %s",
                                payload.conversation_id, identity.user_type, identity.user_id)
                    message = await self._auto_create_and_send(db, service, identity, payload, scope)
            else:
                message = await self._auto_create_and_send(db, service, identity, payload, scope)

            # Resolve the recipient before anything is broadcast
            conversation = await service.get_conversation(message.conversation_id, identity.user_id, identity.user_type)

        recipient_id = conversation.client_id if identity.user_type == AGENT else conversation.agent_id
        property_id = conversation.property_id

        await self.manager.emit_to_room(
            conversation_room(message.conversation_id),
            ServerEvent.NEW_MESSAGE,
            self._message_payload(message, property_id)
        )
        await self.manager.emit_to_room(user_room(recipient_id), ServerEvent.MESSAGE_NOTIFICATION, {
            "conversationId": message.conversation_id,
            "senderId": identity.user_id,
            "senderType": identity.user_type,
            "content": message.content,
            "timestamp": message.created_at,
            "propertyId": property_id,
        })
        await self.manager.emit(socket_id, ServerEvent.MESSAGE_SENT, {
            "id": message.id,
            "conversationId": message.conversation_id,
            "propertyId": property_id,
        })

        logger.debug("Message %s routed in conversation %s to recipient %s",
                     message.id, message.conversation_id, recipient_id)

    async def handle_typing_start(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        await self._broadcast_typing(socket_id, identity, data, True)

    async def handle_typing_stop(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        await self._broadcast_typing(socket_id, identity, data, False)

    async def handle_mark_messages_read(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        payload = ConversationRefPayload.model_validate(data)

        async with self.session_factory() as db:
            receipt = await MessagingService(db).mark_messages_as_read(
                payload.conversation_id, identity.user_id, identity.user_type
            )

        await self.manager.emit_to_room(conversation_room(payload.conversation_id), ServerEvent.MESSAGES_READ, {
            "conversationId": payload.conversation_id,
            "userId": identity.user_id,
            "userType": identity.user_type,
            "readAt": receipt.read_at,
        }, exclude=socket_id)

    async def handle_ping(self, socket_id: str, identity: ConnectionIdentity, data: dict):
        await self.manager.emit(socket_id, ServerEvent.PONG, {})

    # ============= Helpers =============

    async def _broadcast_typing(self, socket_id: str, identity: ConnectionIdentity, data: dict, is_typing: bool):
        payload = ConversationRefPayload.model_validate(data)
        room = conversation_room(payload.conversation_id)

        # Typing is never persisted, so room membership stands in for authorization
        if not self.manager.rooms.is_member(socket_id, room):
            raise AuthorizationError("Join the conversation before sending typing updates")

        await self.manager.emit_to_room(room, ServerEvent.USER_TYPING, {
            "conversationId": payload.conversation_id,
            "userId": identity.user_id,
            "userType": identity.user_type,
            "isTyping": is_typing,
        }, exclude=socket_id)

    async def _auto_create_and_send(
        self,
        db,
        service: MessagingService,
        identity: ConnectionIdentity,
        payload: SendMessagePayload,
        scope: ConversationScope
    ) -> MessageResponse:
        """Resolve the agent/client pair from the timeline, then create-or-get and send.

        Agents have no timeline bound to their socket and must name one in the
        payload; clients always use the timeline their session was opened on.
        """
        directory = TimelineDirectory(db)

        if identity.user_type == AGENT:
            if not payload.timeline_id:
                raise ValidationError("Timeline ID required for agent to create conversation")

            timeline = await directory.get_by_id(payload.timeline_id)
            if timeline is None:
                raise NotFoundError("Timeline", payload.timeline_id)
            if timeline.agent_id != identity.user_id:
                raise AuthorizationError("Not authorized to message on this timeline")

            agent_id, client_id, timeline_id = identity.user_id, timeline.client_id, timeline.id
        else:
            if not identity.timeline_id or not identity.share_token:
                raise ValidationError("No timeline info found for client")

            timeline = await directory.get_by_share_token(identity.share_token)
            if timeline is None:
                raise NotFoundError("Timeline", identity.timeline_id)

            agent_id, client_id, timeline_id = timeline.agent_id, identity.user_id, identity.timeline_id

        logger.info("Auto-creating conversation: timeline=%s agent=%s client=%s scope=%s",
                    timeline_id, agent_id, client_id, scope)

        return await service.send_message_with_auto_create(
            agent_id,
            client_id,
            timeline_id,
            identity.user_id,
            identity.user_type,
            payload.content,
            scope
        )

    @staticmethod
    def _message_payload(message: MessageResponse, property_id: Optional[str]) -> dict:
        data = message.model_dump(by_alias=True)
        data["propertyId"] = property_id
        return data


# Process-wide gateway used by the WebSocket router
gateway = MessagingGateway()
