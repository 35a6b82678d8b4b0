"""
Socket protocol schemas.

Every frame in either direction is a JSON envelope ``{"event": ..., "data": {...}}``.
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from .message import CamelModel


class ClientEvent(str, Enum):
    """Events a connected client may send."""
    AUTHENTICATE = "authenticate"
    JOIN_CONVERSATION = "join-conversation"
    LEAVE_CONVERSATION = "leave-conversation"
    SEND_MESSAGE = "send-message"
    TYPING_START = "typing-start"
    TYPING_STOP = "typing-stop"
    MARK_MESSAGES_READ = "mark-messages-read"
    PING = "ping"


class ServerEvent(str, Enum):
    """Events the server emits."""
    AUTHENTICATED = "authenticated"
    CONVERSATION_JOINED = "conversation_joined"
    NEW_MESSAGE = "new-message"
    MESSAGE_NOTIFICATION = "message-notification"
    MESSAGE_SENT = "message-sent"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    USER_TYPING = "user-typing"
    MESSAGES_READ = "messages-read"
    ERROR = "error"
    PONG = "pong"


class Envelope(BaseModel):
    """Wire frame wrapping every event."""
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, event, data: Optional[Dict[str, Any]] = None) -> "Envelope":
        name = event.value if isinstance(event, Enum) else event
        return cls(event=name, data=data or {})


class HandshakeAuth(CamelModel):
    """Credentials supplied in the query string or the ``authenticate`` frame."""
    token: Optional[str] = None
    session_token: Optional[str] = None
    share_token: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.token and not (self.session_token and self.share_token)


class JoinConversationPayload(CamelModel):
    conversation_id: int
    property_id: Optional[str] = None


class ConversationRefPayload(CamelModel):
    """Payload for leave, typing and mark-read events."""
    conversation_id: int


class SendMessagePayload(CamelModel):
    conversation_id: Optional[int] = None
    content: str
    timeline_id: Optional[str] = None
    property_id: Optional[str] = None
