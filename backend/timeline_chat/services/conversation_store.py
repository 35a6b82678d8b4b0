"""
Persistence for conversations and messages.

The store owns the tuple-uniqueness and unread-counter invariants. Counter
changes are single ``UPDATE ... SET count = count + 1`` statements committed
together with the message insert, so concurrent senders never lose an
increment and no in-process lock is needed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConflictError, NotFoundError
from ..models.conversation import Conversation
from ..models.message import Message
from ..schemas.scope import ConversationScope
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

AGENT = "agent"
CLIENT = "client"
SENDER_TYPES = (AGENT, CLIENT)


def other_party(user_type: str) -> str:
    """The counterpart of ``user_type`` in a two-party conversation."""
    if user_type == AGENT:
        return CLIENT
    if user_type == CLIENT:
        return AGENT
    raise ValueError(f"Unknown user type: {user_type!r}")


def unread_column(user_type: str):
    """Unread counter owned by ``user_type``."""
    return Conversation.agent_unread_count if user_type == AGENT else Conversation.client_unread_count


@dataclass
class StoredPage:
    messages: List[Message]
    has_more: bool
    total: int


@dataclass
class ReadReceipt:
    """Outcome of a mark-read: how many messages changed and the stamp written."""
    marked: int
    read_at: datetime


class ConversationStore:
    """CRUD for conversations and messages bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_conversation(
        self,
        agent_id: str,
        client_id: str,
        timeline_id: str,
        scope: ConversationScope
    ) -> Optional[Conversation]:
        """Exact tuple match; the general scope only matches NULL property rows."""
        property_filter = (
            Conversation.property_id.is_(None)
            if scope.property_id is None
            else Conversation.property_id == scope.property_id
        )
        result = await self.db.execute(
            select(Conversation).filter(
                Conversation.agent_id == agent_id,
                Conversation.client_id == client_id,
                Conversation.timeline_id == timeline_id,
                property_filter
            )
        )
        return result.scalar_one_or_none()

    async def create_conversation(
        self,
        agent_id: str,
        client_id: str,
        timeline_id: str,
        scope: ConversationScope
    ) -> Conversation:
        """Insert a conversation, raising ConflictError if the tuple already exists."""
        conversation = Conversation(
            agent_id=agent_id,
            client_id=client_id,
            timeline_id=timeline_id,
            property_id=scope.property_id
        )
        self.db.add(conversation)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(
                "Conversation insert lost race for agent=%s client=%s timeline=%s scope=%s",
                agent_id, client_id, timeline_id, scope
            )
            raise ConflictError("Conversation already exists for this scope") from e

        await self.db.refresh(conversation)
        return conversation

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """Get conversation by ID."""
        result = await self.db.execute(
            select(Conversation)
            .filter(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def append_message(
        self,
        conversation_id: int,
        sender_id: str,
        sender_type: str,
        content: str
    ) -> Message:
        """Insert a message and bump the recipient's unread counter in one transaction."""
        now = utcnow()
        recipient_counter = unread_column(other_party(sender_type))

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_type=sender_type,
            content=content,
            created_at=now,
            updated_at=now
        )
        self.db.add(message)

        result = await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({
                Conversation.last_message_at: now,
                Conversation.updated_at: now,
                recipient_counter: recipient_counter + 1,
            })
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError("Conversation", str(conversation_id))

        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def mark_read(self, conversation_id: int, reader_type: str) -> ReadReceipt:
        """Mark the other party's unread messages read and zero the reader's counter.

        Idempotent: a second call finds nothing unread and leaves the counter at 0.
        The receipt carries the number of messages that changed state and the
        ``read_at`` stamped on them.
        """
        now = utcnow()
        result = await self.db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_type == other_party(reader_type),
                Message.is_read.is_(False)
            )
            .values(is_read=True, read_at=now, updated_at=now)
        )
        marked = result.rowcount or 0

        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({unread_column(reader_type): 0})
        )
        await self.db.commit()
        return ReadReceipt(marked=marked, read_at=now)

    async def list_messages(self, conversation_id: int, page: int, page_size: int) -> StoredPage:
        """Page through history oldest first."""
        skip = (page - 1) * page_size

        result = await self.db.execute(
            select(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.id)
            .offset(skip)
            .limit(page_size)
        )
        messages = list(result.scalars().all())

        total = await self.db.scalar(
            select(func.count(Message.id)).filter(Message.conversation_id == conversation_id)
        )

        return StoredPage(
            messages=messages,
            has_more=skip + len(messages) < total,
            total=total
        )

    async def recent_messages(self, conversation_id: int, limit: int) -> List[Message]:
        """Newest ``limit`` messages, newest first."""
        result = await self.db.execute(
            select(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_conversations(self, user_id: str, user_type: str) -> List[Conversation]:
        """Active conversations for a participant, most recent activity first."""
        owner = Conversation.agent_id if user_type == AGENT else Conversation.client_id
        result = await self.db.execute(
            select(Conversation)
            .filter(owner == user_id, Conversation.is_active.is_(True))
            .order_by(desc(Conversation.last_message_at))
        )
        return list(result.scalars().all())

    async def set_active(self, conversation_id: int, is_active: bool) -> Conversation:
        """Soft-enable or disable a conversation."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", str(conversation_id))

        conversation.is_active = is_active
        await self.db.commit()
        await self.db.refresh(conversation)
        return conversation
