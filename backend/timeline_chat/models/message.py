"""
Message database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Index
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.time import utcnow


class Message(Base):
    """Text message sent by an agent or a client inside a conversation."""

    __tablename__ = "messages"

    __table_args__ = (
        Index('ix_messages_conversation_created', 'conversation_id', 'created_at'),
        Index('ix_messages_unread', 'conversation_id', 'sender_type', 'is_read'),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    sender_id = Column(String(64), nullable=False, index=True)
    sender_type = Column(String(10), nullable=False)  # "agent", "client"
    content = Column(Text, nullable=False)

    # Read state is the only mutable part of a message
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
