"""
Tests for the socket authentication handshake.
"""

from datetime import timedelta

import pytest

from timeline_chat.errors import AuthenticationError
from timeline_chat.realtime.authenticator import ConnectionAuthenticator
from timeline_chat.schemas.events import HandshakeAuth
from timeline_chat.utils.security import create_access_token

from conftest import (
    AGENT_ID,
    CLIENT_ID,
    OTHER_SHARE_TOKEN,
    SESSION_TOKEN,
    SHARE_TOKEN,
    TIMELINE_ID,
)


@pytest.mark.asyncio
class TestConnectionAuthenticator:

    async def test_agent_token(self, db, agent_token):
        identity = await ConnectionAuthenticator().authenticate(HandshakeAuth(token=agent_token), db)

        assert identity.user_id == AGENT_ID
        assert identity.user_type == "agent"
        assert identity.timeline_id is None
        assert identity.personal_room == f"user-{AGENT_ID}"

    async def test_expired_token(self, db):
        token = create_access_token({"sub": AGENT_ID}, expires_delta=timedelta(minutes=-5))

        with pytest.raises(AuthenticationError):
            await ConnectionAuthenticator().authenticate(HandshakeAuth(token=token), db)

    async def test_garbage_token(self, db):
        with pytest.raises(AuthenticationError):
            await ConnectionAuthenticator().authenticate(HandshakeAuth(token="not-a-jwt"), db)

    async def test_client_session(self, db):
        auth = HandshakeAuth(session_token=SESSION_TOKEN, share_token=SHARE_TOKEN)
        identity = await ConnectionAuthenticator().authenticate(auth, db)

        assert identity.user_id == CLIENT_ID
        assert identity.user_type == "client"
        assert identity.timeline_id == TIMELINE_ID
        assert identity.share_token == SHARE_TOKEN
        assert identity.to_payload() == {"userId": CLIENT_ID, "userType": "client", "timelineId": TIMELINE_ID}

    async def test_session_from_another_timeline(self, db):
        auth = HandshakeAuth(session_token=SESSION_TOKEN, share_token=OTHER_SHARE_TOKEN)

        with pytest.raises(AuthenticationError, match="Invalid client session"):
            await ConnectionAuthenticator().authenticate(auth, db)

    async def test_session_without_share_token(self, db):
        with pytest.raises(AuthenticationError, match="No authentication provided"):
            await ConnectionAuthenticator().authenticate(HandshakeAuth(session_token=SESSION_TOKEN), db)

    async def test_nothing_provided(self, db):
        assert HandshakeAuth().is_empty()
        with pytest.raises(AuthenticationError, match="No authentication provided"):
            await ConnectionAuthenticator().authenticate(HandshakeAuth(), db)
