"""
Unit tests for the Sellbrite integration
"""
from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from storefront.marketplaces.base import MarketplaceSyncOptions, SellbriteCredentials
from storefront.marketplaces.factory import create_marketplace_client
from storefront.marketplaces.sellbrite_client import (
    SellbriteMarketplaceClient,
    map_order_status,
    resolve_sellbrite_credentials,
    to_number,
    transform_sellbrite_order,
)
from storefront.services.marketplace_store import ChannelInput, MarketplaceOrderStore
from storefront.utils.exceptions import ConfigurationError, RateLimitError, SellbriteAPIError


SAMPLE_ORDER = {
    "order_id": 90210,
    "order_number": "114-5550001",
    "order_status": "Completed",
    "payment_status": "captured",
    "shipping_status": "shipped",
    "order_date": "2025-01-15T10:30:00Z",
    "email": "buyer@example.com",
    "shipping_address": {
        "name": "Pat Buyer",
        "address1": "1 Main St",
        "city": "Austin",
        "region": "TX",
        "zip": "78701",
        "country_code": "US",
    },
    "billing_address": {"name": "Billing Name"},
    "items": [
        {"sku": "AF-1", "product_name": "Air Filter", "quantity": "2", "unit_price": "12.50", "channel_fee": 1.5},
        {"quantity": 1, "price": 5},
    ],
    "totals": {"subtotal": 30.0, "shipping": 4.99, "tax": 2.1, "channel_fees": 3.25},
    "discount_codes": ["WELCOME", {"code": "FREESHIP"}, {"amount": 1}],
}


def mock_response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body if body is not None else {}
    response.text = "" if body is None else str(body)
    response.headers = headers or {}
    return response


@pytest.fixture
def sellbrite():
    return SellbriteMarketplaceClient(
        SellbriteCredentials(api_key="key", api_secret="secret"),
        channel_identifier="amazon_us",
        base_url="https://sellbrite.test/",
    )


class TestTransform:
    """Raw Sellbrite order normalization"""

    def test_full_order(self):
        order = transform_sellbrite_order(SAMPLE_ORDER)

        assert order.external_id == "90210"
        assert order.external_number == "114-5550001"
        assert order.status == "shipped"
        assert order.financial_status == "paid"
        assert order.fulfillment_status == "fulfilled"
        assert order.purchase_date == datetime(2025, 1, 15, 10, 30)
        assert order.customer_name == "Pat Buyer"
        assert order.customer_email == "buyer@example.com"
        assert order.subtotal == 30.0
        assert order.marketplace_fees == 3.25
        assert order.promo_codes == ["WELCOME", "FREESHIP"]
        assert order.shipping_address["state"] == "TX"
        assert order.shipping_address["postal_code"] == "78701"
        assert order.shipping_address["country"] == "US"

    def test_items(self):
        first, second = transform_sellbrite_order(SAMPLE_ORDER).items

        assert (first.sku, first.title, first.quantity, first.total_price) == ("AF-1", "Air Filter", 2, 25.0)
        assert first.marketplace_fee == 1.5
        assert second.sku == "item-1"
        assert second.title == "Item 2"
        assert second.unit_price == 5.0

    def test_total_falls_back_to_item_sum(self):
        order = transform_sellbrite_order(SAMPLE_ORDER)
        assert order.total == 30.0

    def test_sparse_order(self):
        order = transform_sellbrite_order({"id": "abc", "status": "mystery", "customer_name": "Walk In"})

        assert order.external_id == "abc"
        assert order.status == "pending"
        assert order.financial_status == "pending"
        assert order.fulfillment_status == "unfulfilled"
        assert order.customer_name == "Walk In"
        assert order.items == []
        assert order.promo_codes is None
        assert order.shipping_address is None

    def test_malformed_fields_are_tolerated(self):
        order = transform_sellbrite_order({
            "order_id": "bad-2",
            "acknowledged_at": "soon",
            "shipping_address": "1 Main St, Austin TX",
            "billing_address": ["Billing Name"],
            "totals": "n/a",
        })

        assert order.external_id == "bad-2"
        assert order.acknowledged_at is None
        assert order.shipping_address is None
        assert order.customer_name is None

        assert transform_sellbrite_order(
            {"order_id": "ok-1", "acknowledged_at": "2025-01-16T08:00:00Z"}
        ).acknowledged_at == datetime(2025, 1, 16, 8)

    def test_helpers(self):
        assert map_order_status("Canceled") == "cancelled"
        assert map_order_status(None) == "pending"
        assert to_number("3.5") == 3.5
        assert to_number("n/a", 7) == 7
        assert to_number(True) == 0.0


class TestClient:
    """HTTP behaviour of the Sellbrite client"""

    def test_fetch_orders_sends_window(self, sellbrite):
        sellbrite.session.get = MagicMock(
            return_value=mock_response(body={"orders": [SAMPLE_ORDER], "warnings": ["slow"], "meta": {"page": 1}})
        )

        result = sellbrite.fetch_orders(
            MarketplaceSyncOptions(since=datetime(2025, 1, 1), until=datetime(2025, 1, 31), limit=10)
        )

        url = sellbrite.session.get.call_args.args[0]
        params = sellbrite.session.get.call_args.kwargs["params"]
        assert url == "https://sellbrite.test/v1/orders"
        assert params == {
            "per_page": 10,
            "created_at_min": "2025-01-01T00:00:00Z",
            "created_at_max": "2025-01-31T00:00:00Z",
            "channel_identifier": "amazon_us",
        }
        assert [o.external_id for o in result.orders] == ["90210"]
        assert result.warnings == ["slow"]
        assert result.meta == {"page": 1}

    def test_list_body(self, sellbrite):
        sellbrite.session.get = MagicMock(return_value=mock_response(body=[SAMPLE_ORDER]))

        result = sellbrite.fetch_orders(MarketplaceSyncOptions())

        params = sellbrite.session.get.call_args.kwargs["params"]
        assert "created_at_min" not in params
        assert params["per_page"] == 50
        assert len(result.orders) == 1

    def test_malformed_order_does_not_block_the_page(self, sellbrite):
        malformed = {"order_id": "bad-2", "items": ["not-an-item"], "totals": {"subtotal": 5}}
        unusable = {"order_id": "bad-3", "items": [{"quantity": "nan"}]}
        sellbrite.session.get = MagicMock(
            return_value=mock_response(body={"orders": [SAMPLE_ORDER, malformed, unusable, "junk"]})
        )

        result = sellbrite.fetch_orders(MarketplaceSyncOptions())

        assert [o.external_id for o in result.orders] == ["90210", "bad-2"]
        assert result.orders[1].items == []
        assert result.rejected == 2
        assert any("bad-3" in warning for warning in result.warnings)

    def test_rejected_credentials(self, sellbrite):
        sellbrite.session.get = MagicMock(return_value=mock_response(401, {"error": "unauthorized"}))

        with pytest.raises(SellbriteAPIError) as exc_info:
            sellbrite.fetch_orders(MarketplaceSyncOptions())

        assert exc_info.value.status_code == 401

    def test_rate_limited(self, sellbrite):
        sellbrite.session.get = MagicMock(return_value=mock_response(429, headers={"Retry-After": "30"}))

        with pytest.raises(RateLimitError) as exc_info:
            sellbrite.fetch_orders(MarketplaceSyncOptions())

        assert exc_info.value.retry_after == 30

    def test_timeout(self, sellbrite):
        sellbrite.session.get = MagicMock(side_effect=requests.exceptions.Timeout())

        with pytest.raises(SellbriteAPIError, match="timeout"):
            sellbrite.fetch_orders(MarketplaceSyncOptions())

    def test_connection_check(self, sellbrite):
        sellbrite.session.get = MagicMock(return_value=mock_response(500, {"error": "down"}))
        assert sellbrite.test_connection()["success"] is False

        sellbrite.session.get = MagicMock(return_value=mock_response(body={"orders": []}))
        assert sellbrite.test_connection() == {"success": True, "marketplace": "sellbrite"}


class TestCredentials:
    """Credential resolution and client factory"""

    def test_missing_credentials(self):
        with pytest.raises(ConfigurationError, match="Amazon US"):
            resolve_sellbrite_credentials("Amazon US", {"apiKey": "only-key"})

    def test_channel_credentials_used(self):
        creds = resolve_sellbrite_credentials("Amazon US", {"apiKey": "k", "apiSecret": "s"})
        assert (creds.api_key, creds.api_secret) == ("k", "s")

    def test_factory_decrypts_channel_credentials(self, db_session):
        channel = MarketplaceOrderStore(db_session).create_channel(
            ChannelInput(
                name="eBay",
                slug="ebay",
                platform="ebay",
                credentials={"apiKey": "sb-key", "apiSecret": "sb-secret"},
                settings={"channel_identifier": "ebay_main"},
            )
        )

        client = create_marketplace_client(channel)

        assert isinstance(client, SellbriteMarketplaceClient)
        assert client.session.auth == ("sb-key", "sb-secret")
        assert client.channel_identifier == "ebay_main"

    def test_factory_rejects_unknown_integration(self, db_session):
        channel = MarketplaceOrderStore(db_session).create_channel(
            ChannelInput(name="Walmart", slug="walmart", platform="walmart",
                         settings={"integration": "channeladvisor"})
        )

        with pytest.raises(ConfigurationError, match="channeladvisor"):
            create_marketplace_client(channel)

    def test_factory_reports_undecryptable_secret(self, db_session):
        channel = MarketplaceOrderStore(db_session).create_channel(
            ChannelInput(name="Amazon", slug="amazon", platform="amazon",
                         credentials={"apiKey": "enc:not-a-token", "apiSecret": "s"})
        )

        with pytest.raises(ConfigurationError, match="apiKey"):
            create_marketplace_client(channel)
