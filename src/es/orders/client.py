"""Commerce API client for enrollment-sync.

Provides a read-only interface to the Squarespace Commerce Orders API.
Uses httpx for transport.

All API calls are GET requests; es never mutates commerce state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.squarespace.com/1.0"
DEFAULT_LOOKBACK_MINUTES = 6

# Only SERVICE line items represent course enrollments; PHYSICAL and
# DIGITAL lines are ignored.
SERVICE_LINE_ITEM = "SERVICE"


class OrderClientError(Exception):
    """Base exception for order client errors."""

    pass


class OrderAuthenticationError(OrderClientError):
    """Raised when the commerce API rejects the API key."""

    pass


class OrderNotFoundError(OrderClientError):
    """Raised when a requested order is not found."""

    pass


@dataclass
class Customization:
    """A free-form label/value pair collected at purchase time."""

    label: str
    value: str


@dataclass
class VariantOption:
    """A structured option chosen at purchase time (e.g. Plan, Section)."""

    option_name: str
    value: str


@dataclass
class LineItem:
    """Normalized line item from the commerce API."""

    line_item_id: str | None
    line_item_type: str
    product_name: str | None
    image_url: str | None = None
    customizations: list[Customization] = field(default_factory=list)
    variant_options: list[VariantOption] = field(default_factory=list)

    @property
    def is_service(self) -> bool:
        return self.line_item_type == SERVICE_LINE_ITEM


@dataclass
class BillingAddress:
    """Subset of the order billing address used as a fallback for student info."""

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


@dataclass
class RawOrder:
    """Normalized order from the commerce API.

    The untouched API payload is kept in ``raw`` so that unclassified
    products can be passed through without losing data.
    """

    order_id: str
    order_number: str
    created_on: str | None
    customer_email: str | None
    line_items: list[LineItem]
    billing_address: BillingAddress | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_service_items(self) -> bool:
        return any(item.is_service for item in self.line_items)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> RawOrder:
        """Build a RawOrder from a commerce API order object.

        Missing or null collections are normalized to empty lists so that
        downstream lookups never have to guard against None.
        """
        line_items: list[LineItem] = []
        for item in payload.get("lineItems") or []:
            if not isinstance(item, dict):
                continue
            line_items.append(
                LineItem(
                    line_item_id=_str_or_none(item.get("id")),
                    line_item_type=str(item.get("lineItemType") or ""),
                    product_name=_str_or_none(item.get("productName")),
                    image_url=_str_or_none(item.get("imageUrl")),
                    customizations=[
                        Customization(label=str(c.get("label") or ""), value=str(c.get("value") or ""))
                        for c in item.get("customizations") or []
                        if isinstance(c, dict)
                    ],
                    variant_options=[
                        VariantOption(
                            option_name=str(o.get("optionName") or ""),
                            value=str(o.get("value") or ""),
                        )
                        for o in item.get("variantOptions") or []
                        if isinstance(o, dict)
                    ],
                )
            )

        billing = payload.get("billingAddress")
        billing_address: BillingAddress | None = None
        if isinstance(billing, dict):
            billing_address = BillingAddress(
                first_name=_str_or_none(billing.get("firstName")),
                last_name=_str_or_none(billing.get("lastName")),
                phone=_str_or_none(billing.get("phone")),
            )

        return cls(
            order_id=str(payload.get("id") or ""),
            order_number=str(payload.get("orderNumber") or ""),
            created_on=_str_or_none(payload.get("createdOn")),
            customer_email=_str_or_none(payload.get("customerEmail")),
            line_items=line_items,
            billing_address=billing_address,
            raw=payload,
        )


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _format_timestamp(value: datetime) -> str:
    """Format a datetime as the ISO 8601 UTC string the commerce API expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO 8601 timestamp, treating naive values as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class SyncWindow:
    """Modification-time window for an order fetch."""

    modified_after: datetime
    modified_before: datetime

    def __post_init__(self) -> None:
        if self.modified_after >= self.modified_before:
            raise ValueError(
                f"Window start {self.modified_after.isoformat()} must be before "
                f"end {self.modified_before.isoformat()}"
            )

    @classmethod
    def lookback(cls, minutes: int = DEFAULT_LOOKBACK_MINUTES, now: datetime | None = None) -> SyncWindow:
        """Window covering the last ``minutes`` minutes."""
        if minutes <= 0:
            raise ValueError(f"Lookback must be a positive number of minutes, got {minutes}")
        end = now or datetime.now(UTC)
        return cls(modified_after=end - timedelta(minutes=minutes), modified_before=end)

    @classmethod
    def between(cls, start: str | datetime, end: str | datetime) -> SyncWindow:
        """Window with an explicit start and end."""
        return cls(modified_after=parse_timestamp(start), modified_before=parse_timestamp(end))

    def to_params(self) -> dict[str, str]:
        return {
            "modifiedAfter": _format_timestamp(self.modified_after),
            "modifiedBefore": _format_timestamp(self.modified_before),
        }

    def describe(self) -> str:
        params = self.to_params()
        return f"{params['modifiedAfter']} to {params['modifiedBefore']}"


class OrderClient:
    """Client for the commerce Orders API.

    This client is read-only and never modifies orders.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the order client.

        Args:
            base_url: API base URL (e.g., "https://api.squarespace.com/1.0").
            api_key: Commerce API key.
            client: Optional preconfigured httpx client (used by tests).
            timeout: Request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "User-Agent": "enrollment-sync",
        }

    def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """Issue a GET request and return the decoded JSON body.

        Raises:
            OrderAuthenticationError: If the API key is rejected.
            OrderNotFoundError: If the resource does not exist.
            OrderClientError: For other transport or API errors.
        """
        url = f"{self._base_url}{path}"
        try:
            response = self._client.get(url, headers=self._headers, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(
                "Commerce API error: status=%s url=%s body=%s",
                status,
                url,
                e.response.text[:500],
            )
            if status in (401, 403):
                raise OrderAuthenticationError(
                    "Commerce API key is invalid or lacks Orders access. "
                    "Please update your API key configuration."
                ) from e
            if status == 404:
                raise OrderNotFoundError(f"Resource not found: {path}") from e
            raise OrderClientError(f"Commerce API error (HTTP {status}): {e}") from e
        except httpx.HTTPError as e:
            raise OrderClientError(f"Commerce API request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise OrderClientError(f"Commerce API returned invalid JSON for {path}") from e
        if not isinstance(data, dict):
            raise OrderClientError(f"Unexpected response shape for {path}")
        return data

    def fetch_orders(self, modified_after: datetime, modified_before: datetime) -> list[RawOrder]:
        """Fetch every order modified inside the window, following pagination.

        The API rejects filter parameters alongside a cursor, so only the
        first request carries the window; later pages pass the cursor alone.

        Raises:
            OrderAuthenticationError: If the API key is invalid.
            OrderClientError: For other API errors.
        """
        window = SyncWindow(modified_after=modified_after, modified_before=modified_before)
        params: dict[str, str] = window.to_params()
        orders: list[RawOrder] = []
        pages = 0

        while True:
            data = self._get("/commerce/orders", params=params)
            pages += 1
            for payload in data.get("result") or []:
                if isinstance(payload, dict):
                    orders.append(RawOrder.from_api(payload))

            pagination = data.get("pagination") or {}
            cursor = pagination.get("nextPageCursor")
            if not pagination.get("hasNextPage", bool(cursor)) or not cursor:
                break
            params = {"cursor": str(cursor)}

        logger.debug("Fetched %d order(s) across %d page(s)", len(orders), pages)
        return orders

    def fetch_student_orders(self, window: SyncWindow) -> list[RawOrder]:
        """Fetch orders in the window that contain at least one SERVICE line item."""
        logger.info("Fetching orders modified between %s", window.describe())
        all_orders = self.fetch_orders(window.modified_after, window.modified_before)
        student_orders = [order for order in all_orders if order.has_service_items]
        logger.info(
            "Found %d student order(s) out of %d total order(s)",
            len(student_orders),
            len(all_orders),
        )
        return student_orders

    def fetch_order_by_id(self, order_id: str) -> RawOrder:
        """Fetch a single order by its identifier.

        Raises:
            OrderNotFoundError: If the order does not exist.
            OrderClientError: For other API errors.
        """
        logger.info("Fetching order details for order ID: %s", order_id)
        return RawOrder.from_api(self._get(f"/commerce/orders/{order_id}"))

    def close(self) -> None:
        self._client.close()


def create_client(base_url: str, api_key: str) -> OrderClient:
    """Factory function to create an order client.

    Args:
        base_url: API base URL.
        api_key: Commerce API key.

    Returns:
        Configured OrderClient instance.
    """
    return OrderClient(base_url, api_key)
