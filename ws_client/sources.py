"""
HTTP snapshot source for the fallback poller.

Reads the REST read API:
    GET /api/orders?status=PENDING,PREPARING,READY
    GET /api/tables

Both answer with the envelope {"success": true, "data": [...]}.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

import httpx

from shared.config.constants import OrderStatus
from shared.config.logging import get_logger
from shared.events.records import OrderItemRecord, OrderRecord, TableRecord
from shared.utils.exceptions import SnapshotFetchError
from ws_client.fallback_poller import Snapshot

logger = get_logger(__name__)

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def order_from_json(data: dict[str, Any]) -> OrderRecord:
    """
    Map one order from the read API.

    Item names come either flat (`name`) or from the nested `menuItem`;
    the table number either flat (`tableNumber`) or from the nested `table`.
    """
    items = []
    for item in data.get("items") or ():
        name = item.get("name") or (item.get("menuItem") or {}).get("name") or ""
        items.append(
            OrderItemRecord(
                id=str(item.get("id", "")),
                name=name,
                quantity=int(item.get("quantity") or 1),
                notes=item.get("notes"),
            )
        )

    table_number = data.get("tableNumber")
    if table_number is None:
        table_number = (data.get("table") or {}).get("tableNumber")

    return OrderRecord(
        id=str(data["id"]),
        order_number=str(data.get("orderNumber") or data["id"]),
        status=str(data["status"]),
        branch_id=_optional_str(data.get("branchId")),
        items=tuple(items),
        table_number=int(table_number) if table_number is not None else None,
        updated_at=_parse_datetime(data.get("updatedAt")),
    )


def table_from_json(data: dict[str, Any]) -> TableRecord:
    table_number = data.get("tableNumber")
    return TableRecord(
        id=str(data["id"]),
        status=str(data["status"]),
        branch_id=_optional_str(data.get("branchId")),
        table_number=int(table_number) if table_number is not None else None,
        updated_at=_parse_datetime(data.get("updatedAt")),
    )


def _map_rows(resource: str, rows: list[Any], mapper: Callable[[dict[str, Any]], Any]) -> list[Any]:
    """Map rows one by one; a malformed row is logged and skipped."""
    records = []
    for index, row in enumerate(rows):
        try:
            if not isinstance(row, dict):
                raise TypeError(f"expected an object, got {type(row).__name__}")
            records.append(mapper(row))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                "Skipping malformed snapshot row",
                resource=resource,
                index=index,
                row_id=row.get("id") if isinstance(row, dict) else None,
                error=f"{type(e).__name__}: {e}",
            )
    return records


class HttpSnapshotSource:
    """
    Snapshot source backed by the REST read API.

    Usage:
        async with httpx.AsyncClient(base_url=settings.api_base_url) as client:
            source = HttpSnapshotSource(client, token_provider=lambda: token)
            snapshot = await source.fetch_snapshot()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_provider: TokenProvider | None = None,
        order_statuses: Iterable[str] = OrderStatus.ACTIVE,
    ) -> None:
        self._client = client
        self._token_provider = token_provider
        self.order_statuses = tuple(order_statuses)

    async def fetch_snapshot(self) -> Snapshot:
        orders, tables = await asyncio.gather(self.fetch_orders(), self.fetch_tables())
        return Snapshot(orders=tuple(orders), tables=tuple(tables))

    async def fetch_orders(self) -> list[OrderRecord]:
        rows = await self._get("orders", "/api/orders", params={"status": ",".join(self.order_statuses)})
        orders = _map_rows("orders", rows, order_from_json)
        # Older read APIs ignore multi-status filters
        return [order for order in orders if order.status in self.order_statuses]

    async def fetch_tables(self) -> list[TableRecord]:
        rows = await self._get("tables", "/api/tables")
        return _map_rows("tables", rows, table_from_json)

    async def _get(self, resource: str, path: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        response = await self._client.get(path, params=params, headers=await self._headers())
        if response.status_code != 200:
            raise SnapshotFetchError(resource, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise SnapshotFetchError(resource, "invalid JSON") from None

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise SnapshotFetchError(resource, error or "unsuccessful response")

        data = body.get("data")
        if not isinstance(data, list):
            raise SnapshotFetchError(resource, "missing data list")
        return data

    async def _headers(self) -> dict[str, str]:
        if self._token_provider is None:
            return {}
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return {"Authorization": f"Bearer {token}"} if token else {}
