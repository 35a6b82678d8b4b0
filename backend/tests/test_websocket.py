"""
End-to-end tests for the messaging WebSocket endpoint.
"""

import asyncio
import time

import pytest
from starlette.websockets import WebSocketDisconnect

from timeline_chat.config import settings
from timeline_chat.realtime.gateway import gateway

from conftest import AGENT_ID, CLIENT_ID, OTHER_SESSION_TOKEN, SESSION_TOKEN, SHARE_TOKEN, TIMELINE_ID

WS = "/messaging/ws"


def _client_url(session_token=SESSION_TOKEN, share_token=SHARE_TOKEN):
    return f"{WS}?sessionToken={session_token}&shareToken={share_token}"


def _receive_until(ws, event):
    """Skip frames until ``event`` arrives."""
    while True:
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]


class TestHandshake:

    def test_agent_query_token(self, api, agent_token):
        with api.websocket_connect(f"{WS}?token={agent_token}") as ws:
            assert ws.receive_json() == {
                "event": "authenticated",
                "data": {"userId": AGENT_ID, "userType": "agent"},
            }
            ws.send_json({"event": "ping", "data": {}})
            assert ws.receive_json() == {"event": "pong", "data": {}}

    def test_client_authenticate_frame(self, api):
        with api.websocket_connect(WS) as ws:
            ws.send_json({
                "event": "authenticate",
                "data": {"sessionToken": SESSION_TOKEN, "shareToken": SHARE_TOKEN},
            })
            frame = ws.receive_json()

        assert frame["event"] == "authenticated"
        assert frame["data"] == {"userId": CLIENT_ID, "userType": "client", "timelineId": TIMELINE_ID}

    def test_bad_token_closes_unauthorized(self, api):
        with api.websocket_connect(f"{WS}?token=bogus") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4401

    def test_mismatched_client_session_closes_unauthorized(self, api):
        with api.websocket_connect(_client_url(session_token=OTHER_SESSION_TOKEN)) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4401

    def test_other_first_frame_closes_unauthorized(self, api):
        with api.websocket_connect(WS) as ws:
            ws.send_json({"event": "send-message", "data": {"content": "hi"}})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4401

    def test_silent_socket_times_out(self, api, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_TIMEOUT_SECONDS", 0.1)
        with api.websocket_connect(WS) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4408

    def test_timeout_covers_whole_handshake(self, api, monkeypatch):
        monkeypatch.setattr(settings, "AUTH_TIMEOUT_SECONDS", 0.5)
        verify = gateway.authenticate

        async def slow_authenticate(auth):
            await asyncio.sleep(0.3)
            return await verify(auth)

        monkeypatch.setattr(gateway, "authenticate", slow_authenticate)

        # Each step alone fits the deadline; together they do not
        with api.websocket_connect(WS) as ws:
            time.sleep(0.3)
            ws.send_json({
                "event": "authenticate",
                "data": {"sessionToken": SESSION_TOKEN, "shareToken": SHARE_TOKEN},
            })
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4408


class TestMessaging:

    def test_client_property_message_notifies_agent(self, api, agent_token):
        with api.websocket_connect(f"{WS}?token={agent_token}") as agent, \
                api.websocket_connect(_client_url()) as client:
            _receive_until(agent, "authenticated")
            _receive_until(client, "authenticated")

            client.send_json({"event": "send-message", "data": {"content": "Is P1 available?", "propertyId": "P1"}})

            sent = _receive_until(client, "message-sent")
            notification = _receive_until(agent, "message-notification")

        assert sent["propertyId"] == "P1"
        assert notification["propertyId"] == "P1"
        assert notification["conversationId"] == sent["conversationId"]
        assert notification["content"] == "Is P1 available?"

    def test_join_and_chat_in_room(self, api, agent_token):
        with api.websocket_connect(f"{WS}?token={agent_token}") as agent, \
                api.websocket_connect(_client_url()) as client:
            _receive_until(agent, "authenticated")
            _receive_until(client, "authenticated")

            client.send_json({"event": "send-message", "data": {"content": "hello", "propertyId": "P2"}})
            conversation_id = _receive_until(client, "message-sent")["conversationId"]

            agent.send_json({"event": "join-conversation", "data": {"conversationId": conversation_id}})
            joined = _receive_until(agent, "conversation_joined")
            assert joined["propertyId"] == "P2"
            assert [m["content"] for m in joined["messages"]] == ["hello"]

            agent.send_json({"event": "send-message", "data": {"conversationId": conversation_id, "content": "hi!"}})
            message = _receive_until(agent, "new-message")
            assert message["content"] == "hi!"
            assert message["propertyId"] == "P2"

            notification = _receive_until(client, "message-notification")
            assert notification["senderType"] == "agent"

    def test_invalid_json_reports_error(self, api, agent_token):
        with api.websocket_connect(f"{WS}?token={agent_token}") as ws:
            _receive_until(ws, "authenticated")
            ws.send_text("{not json")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid JSON payload"}}

    def test_dropped_socket_is_closed(self, api, agent_token, monkeypatch):
        async def dispatch_then_drop(socket_id, event, data):
            manager = gateway.manager
            await manager.drop(socket_id, manager.active_connections[socket_id])

        monkeypatch.setattr(gateway, "dispatch", dispatch_then_drop)

        with api.websocket_connect(f"{WS}?token={agent_token}") as ws:
            _receive_until(ws, "authenticated")
            ws.send_json({"event": "ping", "data": {}})
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 1011
