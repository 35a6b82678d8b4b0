"""
Local message and unread state, keyed by (conversation id, property id).

Keying by conversation id alone would let two property chats between the
same agent and client share one list and one badge.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Tuple

ConversationKey = Tuple[int, Optional[str]]


def conversation_key(conversation_id, property_id: Optional[str] = None) -> ConversationKey:
    return (int(conversation_id), property_id or None)


class ClientMessageStore:
    """Messages and unread badges as a client UI would hold them."""

    def __init__(self):
        self.messages: Dict[ConversationKey, List[dict]] = defaultdict(list)
        self.unread: Dict[ConversationKey, int] = defaultdict(int)
        self._seen: Dict[ConversationKey, set] = defaultdict(set)

    def add_message(self, message: dict) -> bool:
        """Append a ``new-message`` payload. Returns False for duplicates."""
        key = conversation_key(message["conversationId"], message.get("propertyId"))
        message_id = message.get("id")
        if message_id is not None and message_id in self._seen[key]:
            return False
        if message_id is not None:
            self._seen[key].add(message_id)
        self.messages[key].append(message)
        return True

    def set_history(self, conversation_id, property_id: Optional[str], messages: List[dict]) -> None:
        """Replace a conversation's list with the history sent on join."""
        key = conversation_key(conversation_id, property_id)
        self.messages[key] = list(messages)
        self._seen[key] = {m["id"] for m in messages if m.get("id") is not None}

    def messages_for(self, conversation_id, property_id: Optional[str] = None) -> List[dict]:
        return list(self.messages.get(conversation_key(conversation_id, property_id), ()))

    def increment_unread(self, conversation_id, property_id: Optional[str] = None) -> int:
        key = conversation_key(conversation_id, property_id)
        self.unread[key] += 1
        return self.unread[key]

    def clear_unread(self, conversation_id, property_id: Optional[str] = None) -> None:
        self.unread.pop(conversation_key(conversation_id, property_id), None)

    def unread_for(self, conversation_id, property_id: Optional[str] = None) -> int:
        return self.unread.get(conversation_key(conversation_id, property_id), 0)

    def total_unread(self) -> int:
        return sum(self.unread.values())

    def mark_read_by(self, conversation_id, reader_type: str, read_at=None) -> int:
        """Apply a ``messages-read`` event: the reader has seen the other party's messages."""
        changed = 0
        for (cid, _), messages in self.messages.items():
            if cid != int(conversation_id):
                continue
            for message in messages:
                if message.get("senderType") != reader_type and not message.get("isRead"):
                    message["isRead"] = True
                    message["readAt"] = read_at
                    changed += 1
        return changed
