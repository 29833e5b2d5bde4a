"""Unit tests for the commerce Orders API client."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from es.orders.client import (
    OrderAuthenticationError,
    OrderClient,
    OrderClientError,
    OrderNotFoundError,
    RawOrder,
    SyncWindow,
    parse_timestamp,
)

BASE_URL = "https://api.example.com/1.0"


def order(order_id: str, *item_types: str) -> dict[str, Any]:
    return {
        "id": order_id,
        "orderNumber": f"#{order_id}",
        "customerEmail": f"{order_id.lower()}@example.com",
        "lineItems": [
            {"id": f"{order_id}-{n}", "lineItemType": t, "productName": "Associates Program"}
            for n, t in enumerate(item_types)
        ],
    }


def make_client(handler) -> tuple[OrderClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    transport = httpx.MockTransport(recording)
    client = OrderClient(BASE_URL, "key-123", client=httpx.Client(transport=transport))
    return client, requests


WINDOW = SyncWindow.between("2024-03-01T00:00:00Z", "2024-03-01T00:06:00Z")


class TestSyncWindow:
    """Tests for window construction."""

    def test_lookback(self) -> None:
        now = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        window = SyncWindow.lookback(6, now=now)
        assert window.modified_before == now
        assert window.modified_after == now - timedelta(minutes=6)

    def test_params_format(self) -> None:
        assert WINDOW.to_params() == {
            "modifiedAfter": "2024-03-01T00:00:00.000Z",
            "modifiedBefore": "2024-03-01T00:06:00.000Z",
        }

    def test_inverted_window_rejected(self) -> None:
        with pytest.raises(ValueError):
            SyncWindow.between("2024-03-02T00:00:00Z", "2024-03-01T00:00:00Z")

    def test_non_positive_lookback_rejected(self) -> None:
        with pytest.raises(ValueError):
            SyncWindow.lookback(0)

    def test_naive_timestamp_is_utc(self) -> None:
        assert parse_timestamp("2024-03-01T10:00:00") == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)


class TestRawOrder:
    """Tests for payload normalization."""

    def test_null_collections_become_empty(self) -> None:
        raw = RawOrder.from_api(
            {"id": "O1", "lineItems": [{"lineItemType": "SERVICE", "customizations": None, "variantOptions": None}]}
        )
        assert raw.line_items[0].customizations == []
        assert raw.line_items[0].variant_options == []
        assert raw.has_service_items

    def test_missing_line_items(self) -> None:
        raw = RawOrder.from_api({"id": "O1"})
        assert raw.line_items == []
        assert not raw.has_service_items


class TestFetchOrders:
    """Tests for paginated fetching."""

    def test_single_page(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": [order("A", "SERVICE")], "pagination": {}})

        client, requests = make_client(handler)
        orders = client.fetch_orders(WINDOW.modified_after, WINDOW.modified_before)

        assert [o.order_id for o in orders] == ["A"]
        assert requests[0].url.path == "/1.0/commerce/orders"
        assert requests[0].url.params["modifiedAfter"] == "2024-03-01T00:00:00.000Z"
        assert requests[0].headers["Authorization"] == "Bearer key-123"

    def test_follows_cursor_without_window_params(self) -> None:
        pages = {
            None: {"result": [order("A", "SERVICE")], "pagination": {"hasNextPage": True, "nextPageCursor": "c2"}},
            "c2": {"result": [order("B", "SERVICE")], "pagination": {"hasNextPage": False}},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=pages[request.url.params.get("cursor")])

        client, requests = make_client(handler)
        orders = client.fetch_orders(WINDOW.modified_after, WINDOW.modified_before)

        assert [o.order_id for o in orders] == ["A", "B"]
        assert len(requests) == 2
        assert dict(requests[1].url.params) == {"cursor": "c2"}

    def test_student_orders_keep_only_service(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"result": [order("A", "SERVICE", "PHYSICAL"), order("B", "PHYSICAL"), order("C")]},
            )

        client, _ = make_client(handler)
        orders = client.fetch_student_orders(WINDOW)

        assert [o.order_id for o in orders] == ["A"]

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors(self, status: int) -> None:
        client, _ = make_client(lambda request: httpx.Response(status, json={"message": "nope"}))
        with pytest.raises(OrderAuthenticationError):
            client.fetch_student_orders(WINDOW)

    def test_server_error(self) -> None:
        client, _ = make_client(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(OrderClientError, match="503"):
            client.fetch_student_orders(WINDOW)

    def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler)
        with pytest.raises(OrderClientError) as exc_info:
            client.fetch_student_orders(WINDOW)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestFetchOrderById:
    """Tests for single order lookup."""

    def test_found(self) -> None:
        client, requests = make_client(lambda request: httpx.Response(200, json=order("X1", "SERVICE")))
        raw = client.fetch_order_by_id("X1")
        assert raw.order_id == "X1"
        assert requests[0].url.path == "/1.0/commerce/orders/X1"

    def test_not_found(self) -> None:
        client, _ = make_client(lambda request: httpx.Response(404, json={}))
        with pytest.raises(OrderNotFoundError):
            client.fetch_order_by_id("missing")
