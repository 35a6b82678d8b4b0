"""
Services package.
"""

from .conversation_store import ConversationStore, ReadReceipt
from .messaging_service import MessagingService
from .timeline_lookup import TimelineDirectory, SessionValidator, TimelineRef

__all__ = ["ConversationStore", "ReadReceipt", "MessagingService", "TimelineDirectory", "SessionValidator", "TimelineRef"]
