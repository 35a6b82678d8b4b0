"""
Timeline and client session models.

Both tables belong to the timeline/share collaborators; the messaging core
only reads them through ``services.timeline_lookup``.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.time import utcnow


class Timeline(Base):
    """Agent-curated, shareable collection of properties for one client."""

    __tablename__ = "timelines"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False, default="Timeline")
    share_token = Column(String(100), unique=True, index=True, nullable=False)
    agent_id = Column(String(64), nullable=False, index=True)
    client_id = Column(String(64), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    sessions = relationship("ClientSession", back_populates="timeline", cascade="all, delete-orphan")


class ClientSession(Base):
    """Session issued to a client after logging in through a share link."""

    __tablename__ = "client_sessions"

    id = Column(String(64), primary_key=True)
    session_token = Column(String(100), unique=True, index=True, nullable=False)
    timeline_id = Column(String(64), ForeignKey("timelines.id", ondelete="CASCADE"), nullable=False, index=True)
    client_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_access = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    timeline = relationship("Timeline", back_populates="sessions")
