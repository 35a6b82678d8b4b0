"""
Realtime messaging over WebSockets.
"""

from .authenticator import AuthState, ConnectionAuthenticator, ConnectionIdentity
from .rooms import RoomRegistry, ConnectionManager, conversation_room, user_room
from .gateway import MessagingGateway, gateway

__all__ = [
    "AuthState",
    "ConnectionAuthenticator",
    "ConnectionIdentity",
    "RoomRegistry",
    "ConnectionManager",
    "conversation_room",
    "user_room",
    "MessagingGateway",
    "gateway"
]
