"""
Database models package.
"""

from .conversation import Conversation
from .message import Message
from .timeline import Timeline, ClientSession

__all__ = ["Conversation", "Message", "Timeline", "ClientSession"]
