"""
Tests for StatusActions.

Tests verify:
- Connected: the change is emitted and the acknowledgment returned
- Disconnected, or the socket failing mid-request: PATCH over HTTP
- Transient HTTP failures are retried, client errors are not
"""

import json

import httpx
import pytest

from shared.utils.exceptions import AckTimeoutError, NotConnectedError
from shared.utils.retry import RetryConfig
from ws_client.actions import StatusActions, is_transient
from ws_client.connection_manager import AckResult

FAST_RETRY = RetryConfig(initial_delay=0.001, max_delay=0.002, jitter_factor=0.0, max_attempts=3)


class FakeManager:
    def __init__(self, connected: bool = True, ack: AckResult | None = None, error: Exception | None = None) -> None:
        self.is_connected = connected
        self.ack = ack or AckResult(success=True, id="x")
        self.error = error
        self.emitted: list[tuple[str, dict]] = []

    async def emit(self, event_type, data, timeout=None):
        self.emitted.append((event_type, data))
        if self.error is not None:
            raise self.error
        return self.ack


class RecordingApi:
    """MockTransport handler answering with queued responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]


def make_actions(manager, api, token_provider=None) -> StatusActions:
    client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(api))
    return StatusActions(manager, client, token_provider=token_provider, retry_config=FAST_RETRY)


class TestSocketPath:
    @pytest.mark.asyncio
    async def test_emits_when_connected(self):
        manager = FakeManager()
        api = RecordingApi(httpx.Response(200, json={"success": True}))
        actions = make_actions(manager, api)

        ack = await actions.update_order_status("o1", "READY")

        assert ack.success is True
        assert manager.emitted == [("order.status.update", {"orderId": "o1", "status": "READY"})]
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_failure_ack_is_returned_as_is(self):
        manager = FakeManager(ack=AckResult(success=False, error="Failed to update table status"))
        api = RecordingApi(httpx.Response(200, json={"success": True}))
        actions = make_actions(manager, api)

        ack = await actions.update_table_status("t1", "OCCUPIED")

        assert ack == AckResult(success=False, error="Failed to update table status")
        assert manager.emitted == [("table.status.update", {"tableId": "t1", "status": "OCCUPIED"})]
        assert api.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NotConnectedError(), AckTimeoutError("order.status.update", 10.0)])
    async def test_socket_failure_falls_back_to_http(self, error):
        manager = FakeManager(error=error)
        api = RecordingApi(httpx.Response(200, json={"success": True, "data": {}}))
        actions = make_actions(manager, api)

        ack = await actions.update_order_status("o1", "READY")

        assert ack.success is True
        assert len(manager.emitted) == 1
        assert api.requests[0].method == "PATCH"


class TestHttpPath:
    @pytest.mark.asyncio
    async def test_patch_when_disconnected(self):
        manager = FakeManager(connected=False)
        api = RecordingApi(httpx.Response(200, json={"success": True, "data": {}}))
        actions = make_actions(manager, api, token_provider=lambda: "tok-1")

        ack = await actions.update_table_status("t1", "CLEANING")

        assert ack == AckResult(success=True)
        assert manager.emitted == []
        request = api.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/api/tables/t1"
        assert json.loads(request.content) == {"status": "CLEANING"}
        assert request.headers["authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        api = RecordingApi(
            httpx.Response(503),
            httpx.Response(200, json={"success": True}),
        )
        actions = make_actions(FakeManager(connected=False), api)

        ack = await actions.update_order_status("o1", "PREPARING")

        assert ack.success is True
        assert len(api.requests) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retry_budget(self):
        api = RecordingApi(httpx.Response(500))
        actions = make_actions(FakeManager(connected=False), api)

        ack = await actions.update_order_status("o1", "PREPARING")

        assert ack == AckResult(success=False, error="Failed to update order status")
        assert len(api.requests) == FAST_RETRY.max_attempts

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        api = RecordingApi(httpx.Response(404, json={"success": False, "error": "Order not found"}))
        actions = make_actions(FakeManager(connected=False), api)

        ack = await actions.update_order_status("missing", "READY")

        assert ack == AckResult(success=False, error="Order not found")
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        api = RecordingApi(httpx.Response(400, text="bad"))
        actions = make_actions(FakeManager(connected=False), api)

        ack = await actions.update_table_status("t1", "NOPE")

        assert ack == AckResult(success=False, error="Failed to update table status")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        actions = make_actions(FakeManager(connected=False), unreachable)

        ack = await actions.update_order_status("o1", "READY")

        assert ack.success is False


class TestIsTransient:
    def test_classification(self):
        request = httpx.Request("PATCH", "http://api.test/api/orders/o1")

        assert is_transient(httpx.ConnectError("refused", request=request))
        assert is_transient(httpx.HTTPStatusError("boom", request=request, response=httpx.Response(502)))
        assert not is_transient(httpx.HTTPStatusError("nope", request=request, response=httpx.Response(404)))
        assert not is_transient(ValueError("other"))
