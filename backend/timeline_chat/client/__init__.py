"""
Client-side session handling for the messaging socket.
"""

from .session import ClientSession, ConnectionState
from .store import ClientMessageStore, ConversationKey
from .transport import WebSocketTransport

__all__ = ["ClientSession", "ConnectionState", "ClientMessageStore", "ConversationKey", "WebSocketTransport"]
