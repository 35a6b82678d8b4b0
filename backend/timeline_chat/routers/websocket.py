"""
WebSocket endpoint for real-time messaging.
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from ..config import settings
from ..errors import AuthenticationError
from ..realtime.gateway import gateway
from ..schemas.events import ClientEvent, Envelope, HandshakeAuth

router = APIRouter(tags=["Realtime"])
logger = logging.getLogger(__name__)

# Close codes mirror HTTP statuses
CLOSE_UNAUTHORIZED = 4401
CLOSE_AUTH_TIMEOUT = 4408


async def _read_credentials(websocket: WebSocket, auth: HandshakeAuth) -> HandshakeAuth:
    """Use query-string credentials, or wait for an ``authenticate`` frame."""
    if not auth.is_empty():
        return auth

    raw = await websocket.receive_text()
    try:
        envelope = Envelope.model_validate(json.loads(raw))
        if envelope.event != ClientEvent.AUTHENTICATE.value:
            raise AuthenticationError("No authentication provided")
        return HandshakeAuth.model_validate(envelope.data)
    except (json.JSONDecodeError, PayloadError) as e:
        raise AuthenticationError("Malformed authentication frame") from e


async def _authenticate(websocket: WebSocket, handshake: HandshakeAuth):
    """Read and verify credentials; the caller bounds both steps with one timeout."""
    credentials = await _read_credentials(websocket, handshake)
    return await gateway.authenticate(credentials)


@router.websocket("/messaging/ws")
async def messaging_websocket(
    websocket: WebSocket,
    token: Optional[str] = None,
    session_token: Optional[str] = Query(None, alias="sessionToken"),
    share_token: Optional[str] = Query(None, alias="shareToken")
):
    """Authenticate the socket, then pump its events through the gateway in order."""
    socket_id = uuid.uuid4().hex
    await websocket.accept()

    handshake = HandshakeAuth(token=token, session_token=session_token, share_token=share_token)
    try:
        # One deadline covers waiting for credentials and checking them
        identity = await asyncio.wait_for(
            _authenticate(websocket, handshake),
            timeout=settings.AUTH_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        logger.info("Socket %s did not authenticate within %ss", socket_id, settings.AUTH_TIMEOUT_SECONDS)
        await websocket.close(code=CLOSE_AUTH_TIMEOUT, reason="Authentication timeout")
        return
    except AuthenticationError as e:
        logger.info("Socket %s rejected: %s", socket_id, e.message)
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason=e.message)
        return
    except WebSocketDisconnect:
        logger.info("Socket %s closed during authentication", socket_id)
        return

    await gateway.connect(socket_id, websocket, identity)

    try:
        while True:
            raw = await websocket.receive_text()
            if gateway.manager.identity(socket_id) is None:
                # Dropped by the manager after a failed send; already closed
                logger.info("Socket %s was dropped, ending receive loop", socket_id)
                break

            try:
                envelope = Envelope.model_validate(json.loads(raw))
            except (json.JSONDecodeError, PayloadError) as e:
                logger.warning("Invalid frame from socket %s: %s", socket_id, e)
                await gateway.manager.emit(socket_id, "error", {"message": "Invalid JSON payload"})
                continue

            # One event at a time per socket keeps its events FIFO
            await gateway.dispatch(socket_id, envelope.event, envelope.data)
            if gateway.manager.identity(socket_id) is None:
                logger.info("Socket %s was dropped while handling %s", socket_id, envelope.event)
                break
    except WebSocketDisconnect:
        logger.debug("Socket %s disconnected", socket_id)
    except Exception:
        logger.exception("WebSocket error for socket %s", socket_id)
    finally:
        await gateway.disconnect(socket_id)
