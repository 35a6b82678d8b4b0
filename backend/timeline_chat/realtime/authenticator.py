"""
Socket authentication handshake.

A socket starts UNAUTHENTICATED. Agents present a bearer token, clients
present a session token together with the share token of their timeline.
Anything else is rejected; the caller closes the socket.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import AuthenticationError
from ..schemas.events import HandshakeAuth
from ..services.conversation_store import AGENT, CLIENT
from ..services.timeline_lookup import SessionValidator
from ..utils.security import decode_token
from .rooms import user_room

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class ConnectionIdentity:
    """Who is on the other end of a socket. Never persisted."""
    user_id: str
    user_type: str
    timeline_id: Optional[str] = None
    share_token: Optional[str] = None

    @property
    def personal_room(self) -> str:
        return user_room(self.user_id)

    def to_payload(self) -> dict:
        payload = {"userId": self.user_id, "userType": self.user_type}
        if self.timeline_id:
            payload["timelineId"] = self.timeline_id
        return payload


class ConnectionAuthenticator:
    """Turns handshake credentials into a ConnectionIdentity."""

    async def authenticate(self, auth: HandshakeAuth, db: AsyncSession) -> ConnectionIdentity:
        if auth.token:
            token_data = decode_token(auth.token)
            logger.info("Agent %s authenticated", token_data.user_id)
            return ConnectionIdentity(user_id=token_data.user_id, user_type=AGENT)

        if auth.session_token and auth.share_token:
            timeline = await SessionValidator(db).validate(auth.session_token, auth.share_token)
            if timeline is None:
                logger.warning("Invalid client session for share token %s...", auth.share_token[:8])
                raise AuthenticationError("Invalid client session")

            logger.info("Client %s authenticated on timeline %s", timeline.client_id, timeline.id)
            return ConnectionIdentity(
                user_id=timeline.client_id,
                user_type=CLIENT,
                timeline_id=timeline.id,
                share_token=auth.share_token
            )

        logger.warning("Connection attempt without credentials")
        raise AuthenticationError("No authentication provided")
