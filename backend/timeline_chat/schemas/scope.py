"""
Conversation scope: the general timeline chat or a chat about one property.

Storage keeps a nullable ``property_id`` column; everything above the store
passes one of these variants so that ``""`` and ``None`` can never name two
different conversations.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class GeneralScope:
    """The timeline-wide conversation between an agent and a client."""

    @property
    def property_id(self) -> Optional[str]:
        return None

    def __str__(self) -> str:
        return "general"


@dataclass(frozen=True)
class PropertyScope:
    """A conversation about a single property on the timeline."""

    property_id: str

    def __post_init__(self):
        if not self.property_id or not self.property_id.strip():
            raise ValueError("PropertyScope requires a non-empty property_id")

    def __str__(self) -> str:
        return f"property:{self.property_id}"


ConversationScope = Union[GeneralScope, PropertyScope]

GENERAL = GeneralScope()


def scope_for(property_id: Optional[str]) -> ConversationScope:
    """Build a scope from a wire-level property id (missing or blank means general)."""
    if property_id is None or not str(property_id).strip():
        return GENERAL
    return PropertyScope(str(property_id).strip())
