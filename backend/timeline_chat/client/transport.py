"""
WebSocket transport that drives a ClientSession.
"""

import asyncio
import json
import logging
from typing import Dict, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from .session import ClientSession, ConnectionState

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Connects, feeds frames to the session in order, and reconnects with backoff."""

    def __init__(
        self,
        base_url: str,
        session: ClientSession,
        auth: Dict[str, str],
        path: str = "/messaging/ws",
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 5.0
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.session = session
        self.auth = {k: v for k, v in auth.items() if v}
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.connection = None
        self._closing = False

        session.attach(self.send)

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path}?{urlencode(self.auth)}"

    async def send(self, event: str, data: dict) -> None:
        if self.connection is None:
            raise ConnectionError("Not connected to the messaging server")
        await self.connection.send(json.dumps({"event": event, "data": data}))

    async def run(self) -> None:
        """Connect and pump events until closed or out of reconnect attempts."""
        while not self._closing:
            self.session.start_connecting()
            try:
                async with websockets.connect(self.url) as connection:
                    self.connection = connection
                    self.session.on_transport_connected()
                    async for raw in connection:
                        try:
                            frame = json.loads(raw)
                        except json.JSONDecodeError:
                            logger.warning("Ignoring non-JSON frame from server")
                            continue
                        await self.session.on_event(frame.get("event"), frame.get("data") or {})
            except (ConnectionClosed, OSError) as e:
                logger.info("Messaging connection lost: %s", e)
            finally:
                self.connection = None

            if self._closing:
                break

            state = self.session.on_transport_closed()
            if state == ConnectionState.DISCONNECTED:
                logger.warning("Giving up after %d reconnect attempts", self.session.max_reconnect_attempts)
                break

            delay = min(self.reconnect_delay * (2 ** (self.session.reconnect_attempts - 1)), self.max_reconnect_delay)
            await asyncio.sleep(delay)

    async def close(self) -> None:
        self._closing = True
        if self.connection is not None:
            await self.connection.close()
