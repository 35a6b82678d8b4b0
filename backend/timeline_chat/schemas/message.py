"""
Message-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class MessageCreate(CamelModel):
    """Schema for sending a message over REST."""
    content: str


class ClientMessageCreate(MessageCreate):
    """Client REST send; the session token travels in the body."""
    session_token: Optional[str] = None


class MessageResponse(CamelModel):
    """Message response schema."""
    id: int
    conversation_id: int
    sender_id: str
    sender_type: str
    content: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MessagePage(CamelModel):
    """One page of a conversation's history in ascending order."""
    messages: List[MessageResponse] = []
    has_more: bool
    total: int
    page: int = Field(1, ge=1)
    page_size: int
