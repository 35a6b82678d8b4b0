"""
Conversation-related Pydantic schemas.
"""

from pydantic import Field
from typing import Optional, List
from datetime import datetime

from .message import CamelModel, MessageResponse


class ConversationCreate(CamelModel):
    """Schema for an agent creating (or fetching) a conversation."""
    agent_id: Optional[str] = None  # defaults to the calling agent
    client_id: str
    timeline_id: str
    property_id: Optional[str] = None


class ClientConversationCreate(CamelModel):
    """Schema for a client creating (or fetching) a conversation on its timeline."""
    session_token: Optional[str] = None
    property_id: Optional[str] = None


class ClientSessionBody(CamelModel):
    """Body for client endpoints that only need the session token."""
    session_token: Optional[str] = None


class ConversationResponse(CamelModel):
    """Conversation response schema."""
    id: int
    agent_id: str
    client_id: str
    timeline_id: str
    property_id: Optional[str] = None
    is_active: bool
    last_message_at: datetime
    agent_unread_count: int = Field(ge=0)
    client_unread_count: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime


class ConversationWithMessages(ConversationResponse):
    """Conversation with its preloaded messages (newest first)."""
    messages: List[MessageResponse] = []


class PropertyUnreadInfo(CamelModel):
    """Unread count for one property conversation."""
    property_id: str
    unread_count: int = Field(ge=0)


class ClientUnreadInfo(CamelModel):
    """Unread counts for one client, split by property."""
    client_id: str
    unread_count: int = Field(ge=0)
    general_unread_count: int = Field(0, ge=0)
    properties: List[PropertyUnreadInfo] = []


class UnreadSummaryResponse(CamelModel):
    """Agent-wide unread counts grouped by client and property."""
    total_unread: int = Field(ge=0)
    clients: List[ClientUnreadInfo] = []
