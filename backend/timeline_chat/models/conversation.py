"""
Conversation database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.time import utcnow


class Conversation(Base):
    """Chat between one agent and one client on a timeline, optionally scoped to a property."""

    __tablename__ = "conversations"

    __table_args__ = (
        Index('ix_conversations_agent_last_message', 'agent_id', 'last_message_at'),
        Index('ix_conversations_client_last_message', 'client_id', 'last_message_at'),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identity tuple; property_id NULL is the general timeline conversation
    agent_id = Column(String(64), nullable=False)
    client_id = Column(String(64), nullable=False)
    timeline_id = Column(String(64), nullable=False, index=True)
    property_id = Column(String(64), nullable=True, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Only ever incremented for the non-sending party, zeroed by mark-as-read
    agent_unread_count = Column(Integer, nullable=False, default=0)
    client_unread_count = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id"
    )


# One conversation per tuple, the NULL (general) scope included
Index(
    'uq_conversations_scope',
    Conversation.agent_id,
    Conversation.client_id,
    Conversation.timeline_id,
    func.coalesce(Conversation.property_id, ''),
    unique=True,
)
