"""
Messaging service: conversation lookup, sending and read state.

Every operation that touches an existing conversation loads it fresh and
re-checks that the caller is its agent or client; nothing is cached between
calls.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models.conversation import Conversation
from ..schemas.conversation import (
    ConversationResponse,
    ConversationWithMessages,
    ClientUnreadInfo,
    PropertyUnreadInfo,
    UnreadSummaryResponse
)
from ..schemas.message import MessageResponse, MessagePage
from ..schemas.scope import ConversationScope, GENERAL
from .conversation_store import ConversationStore, ReadReceipt, SENDER_TYPES, AGENT

logger = logging.getLogger(__name__)


class MessagingService:
    """Business rules for two-party, timeline-scoped conversations."""

    def __init__(self, db: AsyncSession, store: Optional[ConversationStore] = None):
        self.db = db
        self.store = store or ConversationStore(db)

    async def create_or_get_conversation(
        self,
        agent_id: str,
        client_id: str,
        timeline_id: str,
        scope: ConversationScope = GENERAL
    ) -> ConversationWithMessages:
        """Idempotent upsert by (agent, client, timeline, scope).

        Existing conversations come back with their latest messages preloaded,
        newest first. A concurrent creator winning the insert race is resolved by
        re-reading the row it committed.
        """
        conversation = await self.store.find_conversation(agent_id, client_id, timeline_id, scope)

        if conversation is None:
            try:
                conversation = await self.store.create_conversation(agent_id, client_id, timeline_id, scope)
                logger.info(
                    "Created conversation %s for agent=%s client=%s timeline=%s scope=%s",
                    conversation.id, agent_id, client_id, timeline_id, scope
                )
            except ConflictError:
                conversation = await self.store.find_conversation(agent_id, client_id, timeline_id, scope)
                if conversation is None:
                    raise

        return await self._with_recent_messages(conversation)

    async def get_conversation(
        self,
        conversation_id: int,
        user_id: str,
        user_type: str,
        include_messages: bool = False
    ):
        """Load a conversation the caller participates in."""
        conversation = await self._authorized_conversation(conversation_id, user_id, user_type)
        if include_messages:
            return await self._with_recent_messages(conversation)
        return ConversationResponse.model_validate(conversation)

    async def get_conversations(self, user_id: str, user_type: str) -> List[ConversationWithMessages]:
        """Active conversations for the caller, each with its latest message."""
        self._check_user_type(user_type)
        conversations = await self.store.list_conversations(user_id, user_type)

        results = []
        for conversation in conversations:
            latest = await self.store.recent_messages(conversation.id, 1)
            results.append(self._build_with_messages(conversation, latest))
        return results

    async def send_message(
        self,
        conversation_id: int,
        sender_id: str,
        sender_type: str,
        content: str
    ) -> MessageResponse:
        """Append a message to a conversation the sender participates in."""
        self._validate_content(content)
        conversation = await self._authorized_conversation(conversation_id, sender_id, sender_type)

        if not conversation.is_active:
            raise ValidationError("Conversation is no longer active")

        message = await self.store.append_message(conversation.id, sender_id, sender_type, content)
        logger.debug("Message %s stored in conversation %s by %s %s", message.id, conversation.id, sender_type, sender_id)
        return MessageResponse.model_validate(message)

    async def send_message_with_auto_create(
        self,
        agent_id: str,
        client_id: str,
        timeline_id: str,
        sender_id: str,
        sender_type: str,
        content: str,
        scope: ConversationScope = GENERAL
    ) -> MessageResponse:
        """Create-or-get the conversation for the tuple, then send into it."""
        self._validate_content(content)
        conversation = await self.create_or_get_conversation(agent_id, client_id, timeline_id, scope)
        return await self.send_message(conversation.id, sender_id, sender_type, content)

    async def mark_messages_as_read(self, conversation_id: int, user_id: str, user_type: str) -> ReadReceipt:
        """Mark the other party's messages read and reset the caller's unread counter."""
        conversation = await self._authorized_conversation(conversation_id, user_id, user_type)
        receipt = await self.store.mark_read(conversation.id, user_type)
        if receipt.marked:
            logger.debug(
                "Marked %d messages read in conversation %s for %s %s",
                receipt.marked, conversation.id, user_type, user_id
            )
        return receipt

    async def get_messages(
        self,
        conversation_id: int,
        user_id: str,
        user_type: str,
        page: int = 1,
        page_size: Optional[int] = None
    ) -> MessagePage:
        """Page of history in ascending order."""
        page_size = page_size or settings.DEFAULT_PAGE_SIZE
        if page < 1:
            raise ValidationError("Page must be 1 or greater")
        if page_size < 1:
            raise ValidationError("Page size must be 1 or greater")
        page_size = min(page_size, settings.MAX_PAGE_SIZE)

        conversation = await self._authorized_conversation(conversation_id, user_id, user_type)
        stored = await self.store.list_messages(conversation.id, page, page_size)

        return MessagePage(
            messages=[MessageResponse.model_validate(m) for m in stored.messages],
            has_more=stored.has_more,
            total=stored.total,
            page=page,
            page_size=page_size
        )

    async def get_unread_summary(self, agent_id: str) -> UnreadSummaryResponse:
        """Agent-wide unread counts grouped by client, then by property."""
        result = await self.db.execute(
            select(Conversation)
            .filter(
                Conversation.agent_id == agent_id,
                Conversation.is_active.is_(True),
                Conversation.agent_unread_count > 0
            )
            .order_by(Conversation.client_id, Conversation.property_id)
        )

        clients: Dict[str, ClientUnreadInfo] = {}
        for conversation in result.scalars().all():
            info = clients.setdefault(
                conversation.client_id,
                ClientUnreadInfo(client_id=conversation.client_id, unread_count=0)
            )
            info.unread_count += conversation.agent_unread_count
            if conversation.property_id is None:
                info.general_unread_count += conversation.agent_unread_count
            else:
                info.properties.append(PropertyUnreadInfo(
                    property_id=conversation.property_id,
                    unread_count=conversation.agent_unread_count
                ))

        return UnreadSummaryResponse(
            total_unread=sum(c.unread_count for c in clients.values()),
            clients=list(clients.values())
        )

    async def deactivate_conversation(self, conversation_id: int, user_id: str, user_type: str) -> ConversationResponse:
        """Soft-disable a conversation; history is kept."""
        conversation = await self._authorized_conversation(conversation_id, user_id, user_type)
        conversation = await self.store.set_active(conversation.id, False)
        logger.info("Conversation %s deactivated by %s %s", conversation.id, user_type, user_id)
        return ConversationResponse.model_validate(conversation)

    # ============= Helpers =============

    async def _authorized_conversation(self, conversation_id: int, user_id: str, user_type: str) -> Conversation:
        self._check_user_type(user_type)

        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", str(conversation_id))

        owner_id = conversation.agent_id if user_type == AGENT else conversation.client_id
        if owner_id != user_id:
            logger.warning("%s %s denied access to conversation %s", user_type, user_id, conversation_id)
            raise AuthorizationError()

        return conversation

    async def _with_recent_messages(self, conversation: Conversation) -> ConversationWithMessages:
        recent = await self.store.recent_messages(conversation.id, settings.INITIAL_MESSAGE_LIMIT)
        return self._build_with_messages(conversation, recent)

    @staticmethod
    def _build_with_messages(conversation: Conversation, messages) -> ConversationWithMessages:
        data = ConversationResponse.model_validate(conversation).model_dump()
        data["messages"] = [MessageResponse.model_validate(m) for m in messages]
        return ConversationWithMessages(**data)

    @staticmethod
    def _check_user_type(user_type: str):
        if user_type not in SENDER_TYPES:
            raise ValidationError(f"Unknown user type: {user_type}")

    @staticmethod
    def _validate_content(content: str):
        if content is None or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if settings.MESSAGE_MAX_LENGTH and len(content) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message content exceeds {settings.MESSAGE_MAX_LENGTH} characters")
