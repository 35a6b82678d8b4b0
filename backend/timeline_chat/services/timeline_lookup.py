"""
Narrow interfaces onto the timeline and share collaborators.

The realtime layer and the messaging service only need two lookups from the
timeline side: resolve a timeline to its agent/client pair, and check that a
client session token belongs to the timeline behind a share token. Both are
exposed here so nothing above reaches into those tables directly.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.timeline import Timeline, ClientSession
from ..utils.time import utcnow


@dataclass(frozen=True)
class TimelineRef:
    """The parts of a timeline the messaging core cares about."""
    id: str
    agent_id: str
    client_id: str
    share_token: str

    @classmethod
    def from_model(cls, timeline: Timeline) -> "TimelineRef":
        return cls(
            id=timeline.id,
            agent_id=timeline.agent_id,
            client_id=timeline.client_id,
            share_token=timeline.share_token
        )


class TimelineDirectory:
    """Read-only timeline lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, timeline_id: str) -> Optional[TimelineRef]:
        result = await self.db.execute(
            select(Timeline).filter(Timeline.id == timeline_id, Timeline.is_active.is_(True))
        )
        timeline = result.scalar_one_or_none()
        return TimelineRef.from_model(timeline) if timeline else None

    async def get_by_share_token(self, share_token: str) -> Optional[TimelineRef]:
        result = await self.db.execute(
            select(Timeline).filter(Timeline.share_token == share_token, Timeline.is_active.is_(True))
        )
        timeline = result.scalar_one_or_none()
        return TimelineRef.from_model(timeline) if timeline else None


class SessionValidator:
    """Validates client sessions created by the share-link login flow."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def validate(self, session_token: str, share_token: str) -> Optional[TimelineRef]:
        """Timeline for an active session whose timeline carries ``share_token``, else None."""
        if not session_token or not share_token:
            return None

        result = await self.db.execute(
            select(ClientSession, Timeline)
            .join(Timeline, ClientSession.timeline_id == Timeline.id)
            .filter(
                ClientSession.session_token == session_token,
                ClientSession.is_active.is_(True),
                Timeline.is_active.is_(True)
            )
        )
        row = result.first()
        if row is None:
            return None

        session, timeline = row
        if timeline.share_token != share_token:
            return None

        session.last_access = utcnow()
        await self.db.commit()
        return TimelineRef.from_model(timeline)
