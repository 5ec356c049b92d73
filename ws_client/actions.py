"""
Status Actions.

Staff-initiated status changes. While the socket is connected the change is
emitted as an inbound operation and its acknowledgment returned; otherwise
(or if the socket drops mid-request) it goes over plain HTTP:

    PATCH /api/orders/{id}   {"status": "..."}
    PATCH /api/tables/{id}   {"status": "..."}

Either way the caller gets an AckResult and never waits for the connection.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

import httpx

from shared.config.logging import get_logger
from shared.events.event_types import InboundEventName
from shared.utils.exceptions import AckTimeoutError, NotConnectedError
from shared.utils.retry import RetryConfig, create_http_retry_config, retry_async
from ws_client.connection_manager import AckResult, ConnectionManager

logger = get_logger(__name__)

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]

MSG_ORDER_FAILED = "Failed to update order status"
MSG_TABLE_FAILED = "Failed to update table status"


def is_transient(exc: BaseException) -> bool:
    """Network errors and 5xx responses are worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class StatusActions:
    """
    Usage:
        actions = StatusActions(manager, httpx.AsyncClient(base_url=settings.api_base_url))
        ack = await actions.update_order_status("o1", "PREPARING")
    """

    def __init__(
        self,
        manager: ConnectionManager,
        client: httpx.AsyncClient,
        token_provider: TokenProvider | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._manager = manager
        self._client = client
        self._token_provider = token_provider
        self._retry = retry_config or create_http_retry_config()

    async def update_order_status(self, order_id: str, status: str) -> AckResult:
        return await self._apply(
            InboundEventName.ORDER_STATUS_UPDATE,
            {"orderId": order_id, "status": status},
            f"/api/orders/{order_id}",
            status,
            MSG_ORDER_FAILED,
        )

    async def update_table_status(self, table_id: str, status: str) -> AckResult:
        return await self._apply(
            InboundEventName.TABLE_STATUS_UPDATE,
            {"tableId": table_id, "status": status},
            f"/api/tables/{table_id}",
            status,
            MSG_TABLE_FAILED,
        )

    async def _apply(
        self,
        event_type: InboundEventName,
        data: dict[str, Any],
        path: str,
        status: str,
        failure_message: str,
    ) -> AckResult:
        if self._manager.is_connected:
            try:
                return await self._manager.emit(event_type.value, data)
            except (NotConnectedError, AckTimeoutError) as e:
                # Setting a status is idempotent, so repeating it over HTTP is safe
                logger.info("Socket path failed, falling back to HTTP", event_type=event_type.value, error=e.detail)

        return await self._patch(path, status, failure_message)

    async def _patch(self, path: str, status: str, failure_message: str) -> AckResult:
        headers = await self._headers()

        async def request() -> httpx.Response:
            response = await self._client.patch(path, json={"status": status}, headers=headers)
            if response.status_code >= 500:
                response.raise_for_status()
            return response

        try:
            response = await retry_async(request, self._retry, should_retry=is_transient)
        except httpx.HTTPError as e:
            logger.warning("Status update over HTTP failed", path=path, error=str(e))
            return AckResult(success=False, error=failure_message)

        if response.is_success:
            return AckResult(success=True)

        try:
            body = response.json()
        except ValueError:
            body = None
        error = body.get("error") if isinstance(body, dict) else None
        logger.info("Status update rejected", path=path, status_code=response.status_code)
        return AckResult(success=False, error=error or failure_message)

    async def _headers(self) -> dict[str, str]:
        if self._token_provider is None:
            return {}
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return {"Authorization": f"Bearer {token}"} if token else {}
