"""
Unit tests for the marketplace sync orchestrator
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from storefront.database.models import MarketplaceOrder, MarketplaceSyncRun
from storefront.marketplaces.base import SellbriteCredentials
from storefront.marketplaces.sellbrite_client import SellbriteMarketplaceClient
from storefront.services.marketplace_store import ChannelInput, MarketplaceOrderStore
from storefront.services.marketplace_sync import (
    NO_CHANNELS_MESSAGE,
    MarketplaceSyncService,
    SyncRequest,
)
from storefront.utils.exceptions import NotFoundError, SellbriteAPIError, ValidationError


def service_with(db_session, client):
    return MarketplaceSyncService(db_session, client_factory=lambda channel: client)


class TestSyncOrders:
    """Manual sync of one or more channels"""

    def test_imports_orders_and_records_run(self, db_session, channel, order_factory, fake_client):
        client = fake_client(orders=[order_factory("A-1"), order_factory("A-2")])

        result = service_with(db_session, client).sync_orders(
            SyncRequest(channel_id=channel.id, since=datetime(2025, 1, 1), limit=100)
        )

        assert result["success"] is True
        assert result["totals"] == {"imported": 2, "updated": 0, "skipped": 0, "errors": 0}
        assert db_session.query(MarketplaceOrder).count() == 2

        run = result["runs"][0]
        assert run.status == "success"
        assert run.source == "manual"
        assert run.imported_count == 2
        assert run.run_metadata == {"warnings": [], "order_count": 2}

        assert client.calls[0].since == datetime(2025, 1, 1)
        assert client.calls[0].limit == 100

        db_session.refresh(channel)
        assert channel.last_sync_status == "success"
        assert channel.last_successful_sync_at is not None

    def test_second_sync_counts_updates(self, db_session, channel, order_factory, fake_client):
        client = fake_client(orders=[order_factory("A-1")])
        service = service_with(db_session, client)

        service.sync_orders(SyncRequest(channel_id=channel.id))
        result = service.sync_orders(SyncRequest(channel_id=channel.id))

        assert result["totals"]["imported"] == 0
        assert result["totals"]["updated"] == 1
        assert db_session.query(MarketplaceOrder).count() == 1

    def test_bad_order_is_counted_not_fatal(self, db_session, channel, order_factory, fake_client):
        client = fake_client(orders=[order_factory("A-1"), order_factory("A-2", status="lost")])

        result = service_with(db_session, client).sync_orders(SyncRequest(channel_id=channel.id))

        assert result["success"] is False
        assert result["totals"]["imported"] == 1
        assert result["totals"]["errors"] == 1
        assert result["runs"][0].status == "error"
        assert db_session.query(MarketplaceOrder).count() == 1

    def test_provider_failure_marks_run_and_channel(self, db_session, channel, fake_client):
        client = fake_client(error=SellbriteAPIError("Sellbrite API error: 500", status_code=500))

        result = service_with(db_session, client).sync_orders(SyncRequest(channel_id=channel.id))

        run = result["runs"][0]
        assert result["success"] is False
        assert run.status == "error"
        assert run.error_count == 1
        assert run.run_metadata == {"error": "Sellbrite API error: 500"}

        db_session.refresh(channel)
        assert channel.last_sync_status == "error"
        assert channel.last_sync_message == "Sellbrite API error: 500"

    def test_malformed_provider_order_does_not_block_channel(self, db_session, channel):
        client = SellbriteMarketplaceClient(SellbriteCredentials(api_key="key", api_secret="secret"))
        response = MagicMock(status_code=200, ok=True)
        response.json.return_value = {"orders": [
            {"order_id": "good-1", "order_date": "2025-01-15T10:00:00Z", "total": 20.0},
            {"order_id": "bad-2", "acknowledged_at": "soon", "shipping_address": "n/a"},
            {"order_id": "bad-3", "items": [{"quantity": "nan"}]},
        ]}
        client.session.get = MagicMock(return_value=response)

        result = service_with(db_session, client).sync_orders(SyncRequest(channel_id=channel.id))

        assert result["totals"] == {"imported": 2, "updated": 0, "skipped": 0, "errors": 1}
        assert result["success"] is False
        run = result["runs"][0]
        assert run.status == "error"
        assert run.run_metadata["rejected"] == 1
        assert run.run_metadata["order_count"] == 2
        external_ids = {o.external_id for o in db_session.query(MarketplaceOrder).all()}
        assert external_ids == {"good-1", "bad-2"}

    def test_unexpected_failure_is_captured(self, db_session, channel, fake_client):
        client = fake_client(error=RuntimeError("socket closed"))

        result = service_with(db_session, client).sync_orders(SyncRequest(channel_id=channel.id))

        assert result["runs"][0].message == "socket closed"

    def test_warnings_kept_in_metadata(self, db_session, channel, fake_client):
        client = fake_client(warnings=["Page 3 returned no orders"])

        result = service_with(db_session, client).sync_orders(SyncRequest(channel_id=channel.id))

        assert result["runs"][0].run_metadata["warnings"] == ["Page 3 returned no orders"]

    def test_unknown_channel(self, db_session, fake_client):
        with pytest.raises(NotFoundError):
            service_with(db_session, fake_client()).sync_orders(SyncRequest(channel_id="mpch_missing"))

    def test_platform_mismatch(self, db_session, channel, fake_client):
        with pytest.raises(ValidationError):
            service_with(db_session, fake_client()).sync_orders(
                SyncRequest(channel_id=channel.id, platform="ebay")
            )

    def test_no_channels(self, db_session, fake_client):
        result = service_with(db_session, fake_client()).sync_orders()

        assert result["success"] is True
        assert result["runs"] == []
        assert result["message"] == NO_CHANNELS_MESSAGE

    def test_all_enabled_channels(self, db_session, channel, order_factory, fake_client):
        store = MarketplaceOrderStore(db_session)
        store.create_channel(ChannelInput(name="eBay", slug="ebay", platform="ebay", status="active"))
        store.create_channel(ChannelInput(name="Walmart", slug="walmart", platform="walmart", sync_enabled=False))

        result = service_with(db_session, fake_client(orders=[order_factory()])).sync_orders()

        assert len(result["runs"]) == 2
        assert result["totals"]["imported"] == 2
        assert db_session.query(MarketplaceSyncRun).count() == 2


class TestScheduledSync:
    """Due-channel selection"""

    def test_due_channels(self, db_session, channel):
        store = MarketplaceOrderStore(db_session)
        paused = store.create_channel(ChannelInput(name="eBay", slug="ebay", platform="ebay", status="paused"))
        service = MarketplaceSyncService(db_session)
        now = datetime(2025, 3, 1, 12, 0)

        assert [c.id for c in service.due_channels(now)] == [channel.id]
        assert paused.id not in [c.id for c in service.due_channels(now)]

        store.record_channel_sync(channel, "success", "ok", now - timedelta(minutes=5))
        assert service.due_channels(now) == []

        assert [c.id for c in service.due_channels(now + timedelta(minutes=10))] == [channel.id]

    def test_sync_due_channels_uses_scheduled_source(self, db_session, channel, order_factory, fake_client):
        result = service_with(db_session, fake_client(orders=[order_factory()])).sync_due_channels()

        assert result["runs"][0].source == "scheduled"
        assert result["totals"]["imported"] == 1

    def test_nothing_due(self, db_session, fake_client):
        result = service_with(db_session, fake_client()).sync_due_channels()
        assert result["message"] == NO_CHANNELS_MESSAGE
