"""
End-to-end tests through the FastAPI app.

Tests verify:
- Branch b1 receives order.status.updated and kitchen.ticket.new for o1,
  branch b2 receives nothing
- A garbage token is refused with its reason and never joins a room
- Heartbeats, malformed frames, oversized frames and idle timeouts
- The health endpoint
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ws_gateway.main import create_app
from ws_gateway.server import GatewayServer


class TestBranchBroadcast:
    """Events reach exactly the order's branch."""

    def test_b1_receives_b2_does_not(self, client, store, make_token):
        b1_token = make_token(user_id="u1", branch_id="b1", name="Ana")
        b2_token = make_token(user_id="u2", branch_id="b2")

        with client.websocket_connect(f"/ws?token={b1_token}") as ws1, client.websocket_connect(
            f"/ws?token={b2_token}"
        ) as ws2:
            ws1.send_json(
                {"type": "order.status.update", "id": "a1", "data": {"orderId": "o1", "status": "PREPARING"}}
            )

            updated = ws1.receive_json()
            ticket = ws1.receive_json()
            ack = ws1.receive_json()

            assert updated["type"] == "order.status.updated"
            assert updated["data"]["orderId"] == "o1"
            assert updated["data"]["status"] == "PREPARING"
            assert updated["data"]["updatedBy"] == {"id": "u1", "name": "Ana"}
            assert ticket["type"] == "kitchen.ticket.new"
            assert ticket["data"]["orderId"] == "o1"
            assert ack == {"type": "ack", "id": "a1", "success": True}

            # Anything broadcast to b2 would be queued ahead of this pong
            ws2.send_text("ping")
            assert ws2.receive_text() == "pong"

        assert store.get_order("o1").status == "PREPARING"

    def test_bearer_header_is_accepted(self, client, make_token):
        headers = {"Authorization": f"Bearer {make_token()}"}

        with client.websocket_connect("/ws", headers=headers) as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}


class TestHandshakeRejection:
    """Rejected sockets never join a room."""

    def test_garbage_token(self, client, server):
        with client.websocket_connect("/ws?token=garbage") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 4001
        assert exc_info.value.reason == "Authentication error: Invalid token"
        assert server.router.snapshot() == {}
        assert server.metrics.connection.rejected_auth == 1

    def test_missing_token(self, client):
        with client.websocket_connect("/ws") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 4000
        assert exc_info.value.reason == "Authentication error: Token required"

    def test_expired_token(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token(ttl=-30)}") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 4001
        assert exc_info.value.reason == "Authentication error: Token expired"

    def test_disallowed_origin(self, client, make_token):
        headers = {"origin": "https://evil.example"}

        with client.websocket_connect(f"/ws?token={make_token()}", headers=headers) as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 4003
        assert exc_info.value.reason == "Origin not allowed"

    def test_admitted_connection_is_in_its_rooms(self, client, server, make_token):
        with client.websocket_connect(f"/ws?token={make_token(user_id='u5', role='CHEF')}") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

            rooms = server.router.snapshot()
            assert set(rooms) == {"branch:b1", "role:CHEF", "user:u5"}

        assert server.metrics.connection.accepted == 1


class TestMessageLoop:
    """Frame handling on an admitted socket."""

    def test_invalid_json_acks_error(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_text("{not json")
            assert ws.receive_json() == {
                "type": "ack",
                "id": None,
                "success": False,
                "error": "Invalid message format",
            }

            # The connection stays open
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_unknown_event_type(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_json({"type": "menu.update", "id": "m1", "data": {}})
            ack = ws.receive_json()

        assert ack == {"type": "ack", "id": "m1", "success": False, "error": "Unknown event type: menu.update"}

    def test_invalid_payload(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_json({"type": "table.status.update", "id": "t1", "data": {"status": "OCCUPIED"}})
            ack = ws.receive_json()

        assert ack["success"] is False
        assert ack["error"] == "Invalid data: tableId and status are required"

    def test_oversized_frame_closes_connection(self, client, make_token, test_settings):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_text("x" * (test_settings.ws_max_message_size + 1))
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1009
        assert exc_info.value.reason == "Message too large"

    def test_idle_connection_times_out(self, store, test_settings, make_token):
        settings = test_settings.model_copy(update={"ws_receive_timeout": 0.2})
        server = GatewayServer(store=store, settings=settings)

        with TestClient(create_app(server)) as client:
            with client.websocket_connect(f"/ws?token={make_token()}") as ws:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_text()

        assert exc_info.value.code == 1000
        assert exc_info.value.reason == "Connection timeout"
        assert server.metrics.connection.idle_timeouts == 1


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "ws-gateway"
        assert body["version"] == "1.0.0"
        assert body["connections"] == 0
        assert body["rooms"] == 0
        assert body["uptime"] >= 0

    def test_health_counts_connections(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_text("ping")
            ws.receive_text()

            body = client.get("/health").json()

        assert body["connections"] == 1
        assert body["rooms"] == 3

    def test_health_needs_no_token(self, client):
        assert client.get("/health", headers={}).status_code == 200
