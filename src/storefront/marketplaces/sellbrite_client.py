"""
Sellbrite API client implementation.

Sellbrite aggregates orders from Amazon, eBay and Walmart. The client pulls
orders with HTTP Basic auth and normalizes them into MarketplaceOrderInput
records for the order store.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from storefront.marketplaces.base import (
    MarketplaceClient,
    MarketplaceOrderInput,
    MarketplaceOrderItemInput,
    MarketplaceSyncOptions,
    ProviderOrdersResult,
    SellbriteCredentials,
)
from storefront.utils.config import get_config
from storefront.utils.dates import isoformat, parse_datetime
from storefront.utils.exceptions import (
    ConfigurationError,
    SellbriteAPIError,
    StorefrontError,
    ValidationError,
    handle_api_error,
)
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


ORDERS_PATH = "/v1/orders"

_ORDER_STATUS_MAP = {
    "pending": "pending",
    "open": "pending",
    "awaiting_shipment": "pending",
    "awaiting": "pending",
    "unacknowledged": "pending",
    "acknowledged": "acknowledged",
    "accepted": "acknowledged",
    "processing": "processing",
    "inprocess": "processing",
    "in_progress": "processing",
    "shipped": "shipped",
    "fulfilled": "shipped",
    "complete": "shipped",
    "completed": "shipped",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "void": "cancelled",
    "closed": "closed",
    "archived": "closed",
}

_FINANCIAL_STATUS_MAP = {
    "paid": "paid",
    "captured": "paid",
    "settled": "paid",
    "pending": "pending",
    "awaiting_payment": "pending",
    "authorized": "authorized",
    "pending_capture": "authorized",
    "refunded": "refunded",
    "partially_refunded": "refunded",
    "void": "voided",
    "voided": "voided",
    "canceled": "voided",
}

_FULFILLMENT_STATUS_MAP = {
    "fulfilled": "fulfilled",
    "shipped": "fulfilled",
    "complete": "fulfilled",
    "completed": "fulfilled",
    "partial": "partial",
    "partially_fulfilled": "partial",
}


def map_order_status(value: Optional[str]) -> str:
    return _ORDER_STATUS_MAP.get((value or "").lower(), "pending")


def map_financial_status(value: Optional[str]) -> str:
    return _FINANCIAL_STATUS_MAP.get((value or "").lower(), "pending")


def map_fulfillment_status(value: Optional[str]) -> str:
    return _FULFILLMENT_STATUS_MAP.get((value or "").lower(), "unfulfilled")


def to_number(value: Any, fallback: float = 0.0) -> float:
    """Numeric value of a number or numeric string, else the fallback."""
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return fallback
    return fallback


def _first(mapping: Dict[str, Any], *keys: str) -> Any:
    """First non-None value among keys."""
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def map_address(address: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not address or not isinstance(address, dict):
        return None

    return {
        "name": _first(address, "name", "full_name"),
        "company": address.get("company"),
        "address1": _first(address, "address1", "address"),
        "address2": address.get("address2"),
        "city": address.get("city"),
        "state": _first(address, "state", "region", "province"),
        "postal_code": _first(address, "postal_code", "zip"),
        "country": _first(address, "country", "country_code"),
        "phone": address.get("phone"),
    }


def map_item(item: Dict[str, Any], index: int) -> MarketplaceOrderItemInput:
    quantity = to_number(item.get("quantity"), 1)
    unit_price = to_number(_first(item, "unit_price", "price"), 0)
    total_price = to_number(item.get("total"), unit_price * quantity)

    return MarketplaceOrderItemInput(
        sku=_first(item, "sku", "sku_code") or f"item-{index}",
        title=_first(item, "product_name", "title") or f"Item {index + 1}",
        quantity=int(quantity),
        unit_price=unit_price,
        total_price=total_price,
        marketplace_fee=to_number(item.get("channel_fee"), 0),
        data=item,
    )


def _promo_codes(entries: Any) -> Optional[List[str]]:
    if not isinstance(entries, list) or not entries:
        return None

    codes = []
    for entry in entries:
        if isinstance(entry, str):
            code = entry
        elif isinstance(entry, dict):
            code = entry.get("code")
        else:
            code = None
        if code:
            codes.append(code)
    return codes


def _purchase_date(order: Dict[str, Any]) -> datetime:
    raw = _first(order, "order_date", "placed_at", "created_at")
    if raw is None:
        return datetime.utcnow()
    try:
        return parse_datetime(raw, field="order_date")
    except ValidationError:
        logger.warning(f"Unparseable Sellbrite order date {raw!r}; using import time")
        return datetime.utcnow()


def _acknowledged_at(order: Dict[str, Any]) -> Optional[datetime]:
    raw = order.get("acknowledged_at")
    if not raw:
        return None
    try:
        return parse_datetime(raw, field="acknowledged_at")
    except ValidationError:
        logger.warning(f"Unparseable Sellbrite acknowledged_at {raw!r}; leaving it empty")
        return None


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _amount(order: Dict[str, Any], totals: Dict[str, Any], key: str, totals_key: Optional[str] = None) -> Any:
    """Order-level amount, falling back to the nested totals block."""
    value = order.get(key)
    return value if value is not None else totals.get(totals_key or key)


def transform_sellbrite_order(order: Dict[str, Any]) -> MarketplaceOrderInput:
    """
    Normalize a raw Sellbrite order.

    Missing totals fall back to the sum of item totals; missing identifiers
    fall back through order_id, id, identifier, external_id and order_number.
    """
    raw_items = order.get("items") if isinstance(order.get("items"), list) else []
    items = [map_item(item, index) for index, item in enumerate(raw_items) if isinstance(item, dict)]
    totals = _mapping(order.get("totals"))

    shipping_address = _mapping(order.get("shipping_address"))
    billing_address = _mapping(order.get("billing_address"))

    external_id = _first(order, "order_id", "id", "identifier", "external_id", "order_number")
    if external_id is None:
        external_id = f"unknown-{int(datetime.utcnow().timestamp() * 1000)}"

    return MarketplaceOrderInput(
        external_id=str(external_id),
        external_number=_first(order, "order_number", "reference"),
        status=map_order_status(_first(order, "order_status", "status")),
        financial_status=map_financial_status(_first(order, "financial_status", "payment_status")),
        fulfillment_status=map_fulfillment_status(_first(order, "fulfillment_status", "shipping_status")),
        purchase_date=_purchase_date(order),
        acknowledged_at=_acknowledged_at(order),
        customer_name=shipping_address.get("name") or billing_address.get("name") or order.get("customer_name"),
        customer_email=_first(order, "customer_email", "email"),
        currency=order.get("currency") or totals.get("currency") or "USD",
        subtotal=to_number(_amount(order, totals, "subtotal"), 0),
        shipping=to_number(_amount(order, totals, "shipping"), 0),
        tax=to_number(_amount(order, totals, "tax"), 0),
        total=to_number(_amount(order, totals, "total"), sum(item.total_price for item in items)),
        marketplace_fees=to_number(_amount(order, totals, "marketplace_fee", "channel_fees"), 0),
        promo_codes=_promo_codes(order.get("discount_codes")),
        shipping_address=map_address(_first(order, "shipping_address", "consignee", "ship_to")),
        data=order,
        items=items,
    )


def resolve_sellbrite_credentials(channel_name: str, credentials: Optional[Dict[str, Any]]) -> SellbriteCredentials:
    """
    Channel credentials, falling back to the account-level configuration.

    Raises:
        ConfigurationError: If neither source provides a key and secret
    """
    credentials = credentials or {}
    config = get_config().sellbrite

    api_key = credentials.get("apiKey") or config.api_key
    api_secret = credentials.get("apiSecret") or config.api_secret

    if not api_key or not api_secret:
        raise ConfigurationError(
            f'Sellbrite credentials are not configured for channel "{channel_name}". '
            "Provide apiKey and apiSecret in channel credentials or "
            "SELLBRITE_API_KEY/SELLBRITE_API_SECRET environment variables."
        )
    return SellbriteCredentials(api_key=api_key, api_secret=api_secret)


class SellbriteMarketplaceClient(MarketplaceClient):
    """
    Sellbrite orders API client.

    Retries idempotent GETs on 5xx responses through the session adapter.
    """

    def __init__(
        self,
        credentials: SellbriteCredentials,
        channel_identifier: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(credentials)
        config = get_config().sellbrite

        self.base_url = (base_url or config.base_url).rstrip("/")
        self.timeout = config.timeout
        self.page_size = config.page_size
        self.channel_identifier = channel_identifier

        self.session = requests.Session()
        retry_strategy = Retry(
            total=config.retry_count,
            backoff_factor=config.retry_delay,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.auth = (credentials.api_key, credentials.api_secret)
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "Storefront/1.0",
        })

        logger.debug(f"Initialized Sellbrite client (base_url={self.base_url})")

    @property
    def marketplace_name(self) -> str:
        return "sellbrite"

    def _make_request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a Sellbrite endpoint and return the decoded JSON body.

        Raises:
            SellbriteAPIError: On transport failures and non-2xx responses
        """
        url = f"{self.base_url}{path}"
        params = {k: v for k, v in (params or {}).items() if v not in (None, "")}

        try:
            logger.debug(f"Sellbrite request: GET {url} {params}")
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise SellbriteAPIError(f"Request timeout after {self.timeout}s", endpoint=url)
        except requests.exceptions.ConnectionError:
            raise SellbriteAPIError(f"Connection failed to {url}", endpoint=url)
        except requests.exceptions.RequestException as e:
            raise SellbriteAPIError(f"Request failed: {e}", endpoint=url)

        if not response.ok:
            handle_api_error(response, url, error_class=SellbriteAPIError, provider="Sellbrite")

        try:
            return response.json()
        except ValueError:
            raise SellbriteAPIError("Sellbrite returned a non-JSON response", endpoint=url,
                                    status_code=response.status_code)

    def list_orders(self, options: MarketplaceSyncOptions) -> Dict[str, Any]:
        """Raw orders page: ``{"orders": [...], "warnings": [...], "meta": {...}}``."""
        params = {
            "per_page": options.limit or self.page_size,
            "created_at_min": isoformat(options.since),
            "created_at_max": isoformat(options.until),
            "channel_identifier": self.channel_identifier,
        }
        body = self._make_request(ORDERS_PATH, params)

        if isinstance(body, list):
            return {"orders": body, "warnings": [], "meta": None}

        body = body if isinstance(body, dict) else {}
        orders = body.get("orders") if isinstance(body.get("orders"), list) else []
        warnings = [w for w in body.get("warnings") or [] if isinstance(w, str)]
        meta = body.get("meta") if isinstance(body.get("meta"), dict) else None
        return {"orders": orders, "warnings": warnings, "meta": meta}

    def fetch_orders(self, options: MarketplaceSyncOptions) -> ProviderOrdersResult:
        raw = self.list_orders(options)
        orders = []
        warnings = list(raw["warnings"])
        rejected = 0

        for order in raw["orders"]:
            try:
                if not isinstance(order, dict):
                    raise ValueError(f"expected an object, got {type(order).__name__}")
                orders.append(transform_sellbrite_order(order))
            except (StorefrontError, ArithmeticError, ValueError, TypeError, AttributeError) as e:
                rejected += 1
                order_ref = _first(order, "order_id", "id", "order_number") if isinstance(order, dict) else None
                logger.error(f"Could not normalize Sellbrite order {order_ref}: {e}")
                warnings.append(f"Skipped Sellbrite order {order_ref}: {e}")

        logger.info(f"Fetched {len(orders)} order(s) from Sellbrite, {rejected} rejected")
        return ProviderOrdersResult(orders=orders, warnings=warnings, meta=raw["meta"], rejected=rejected)

    def test_connection(self) -> Dict[str, Any]:
        try:
            self._make_request(ORDERS_PATH, {"per_page": 1})
            return {"success": True, "marketplace": self.marketplace_name}
        except SellbriteAPIError as e:
            logger.warning(f"Sellbrite connection test failed: {e.message}")
            return {"success": False, "marketplace": self.marketplace_name, "error": e.message}
