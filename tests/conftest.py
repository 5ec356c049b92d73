"""
Pytest configuration and fixtures for gateway and client tests.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from shared.config.settings import Settings
from shared.events.records import OrderItemRecord, OrderRecord, TableRecord
from shared.infrastructure.status_store import InMemoryStatusStore
from shared.security.auth import Identity, sign_token
from ws_gateway.components.connection.connection import Connection
from ws_gateway.main import create_app
from ws_gateway.server import GatewayServer


TEST_SECRET = "test-secret-for-the-realtime-gateway-0123456789"


@pytest.fixture
def test_settings():
    """Development settings with a known secret and short timeouts."""
    return Settings(
        environment="development",
        debug=False,
        jwt_secret=TEST_SECRET,
        jwt_algorithm="HS256",
        jwt_leeway_seconds=0,
        allowed_origins="",
        ws_auth_timeout=2.0,
        ws_receive_timeout=5.0,
        ws_max_message_size=4096,
    )


@pytest.fixture
def make_token():
    """Factory for signed tokens."""
    def _make(
        user_id: str = "u1",
        role: str = "STAFF",
        branch_id: str | None = "b1",
        name: str | None = None,
        ttl: int = 300,
        secret: str = TEST_SECRET,
    ) -> str:
        identity = Identity(id=user_id, role=role, branch_id=branch_id, name=name)
        return sign_token(identity, ttl, secret=secret, algorithm="HS256")

    return _make


# =============================================================================
# Status store
# =============================================================================


@pytest.fixture
def store():
    """In-memory store seeded with one order and two tables."""
    return InMemoryStatusStore(
        orders=[
            OrderRecord(
                id="o1",
                order_number="ORD-000001",
                status="PENDING",
                branch_id="b1",
                items=(OrderItemRecord(id="i1", name="Empanada", quantity=2, notes="sin cebolla"),),
                table_number=4,
            ),
            OrderRecord(id="o2", order_number="ORD-000002", status="PENDING", branch_id="b2"),
        ],
        tables=[
            TableRecord(id="t1", status="AVAILABLE", branch_id="b1", table_number=4),
            TableRecord(id="t9", status="AVAILABLE", branch_id=None, table_number=9),
        ],
    )


# =============================================================================
# Gateway
# =============================================================================


@pytest.fixture
def server(store, test_settings):
    return GatewayServer(store=store, settings=test_settings)


@pytest.fixture
def client(server):
    """
    TestClient with the lifespan running, so the server is started.
    """
    with TestClient(create_app(server)) as test_client:
        yield test_client


class FakeWebSocket:
    """Stands in for a starlette WebSocket in unit tests."""

    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None

    async def send_text(self, data: str) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("Cannot send once a close message has been sent")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.close_reason = reason
        self.application_state = WebSocketState.DISCONNECTED
        self.client_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer going away without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    def frames(self) -> list:
        return [json.loads(f) if f.startswith("{") else f for f in self.sent]


@pytest.fixture
def make_connection():
    """Factory for Connections on fake sockets."""
    def _make(
        user_id: str = "u1",
        role: str = "STAFF",
        branch_id: str | None = "b1",
        name: str | None = None,
        router=None,
        **kwargs,
    ) -> Connection:
        identity = Identity(id=user_id, role=role, branch_id=branch_id, name=name)
        on_dead = kwargs.pop("on_dead", router.leave if router is not None else None)
        return Connection(FakeWebSocket(), identity, on_dead=on_dead, **kwargs)

    return _make


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Poll a condition from async tests."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def eventually():
    return wait_until
