"""
Marketplace sync orchestrator.

Pulls orders from each channel's integration provider and records them
through the order store, keeping one sync run per channel.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.database.models import (
    ChannelStatus,
    MarketplaceChannel,
    MarketplaceSyncRun,
    SyncSource,
    SyncStatus,
    utcnow,
)
from storefront.marketplaces.base import MarketplaceClient, MarketplaceSyncOptions
from storefront.marketplaces.factory import create_marketplace_client
from storefront.monitoring.prometheus_metrics import get_metrics
from storefront.services.marketplace_store import MarketplaceOrderStore, SyncCounts, summarize_sync
from storefront.utils.exceptions import NotFoundError, StorefrontError, ValidationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


NO_CHANNELS_MESSAGE = "No marketplace channels matched the sync criteria."
DEFAULT_SYNC_FREQUENCY_MINUTES = 15


@dataclass
class SyncRequest:
    """What to sync: one channel, one platform, or every enabled channel."""
    channel_id: Optional[str] = None
    platform: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None
    source: str = SyncSource.MANUAL.value

    @property
    def options(self) -> MarketplaceSyncOptions:
        return MarketplaceSyncOptions(since=self.since, until=self.until, limit=self.limit)


class MarketplaceSyncService:
    """
    Synchronous order sync, suitable for request threads and scheduler jobs.

    Channels are synced one after another; a failing order is counted and
    logged without aborting the rest of the run.
    """

    def __init__(
        self,
        db_session: Session,
        client_factory: Callable[[MarketplaceChannel], MarketplaceClient] = create_marketplace_client,
    ):
        """
        Initialize sync service.

        Args:
            db_session: Database session
            client_factory: Builds the provider client for a channel
        """
        self.db = db_session
        self.store = MarketplaceOrderStore(db_session)
        self.client_factory = client_factory
        self.metrics = get_metrics()

    def sync_orders(self, request: Optional[SyncRequest] = None) -> Dict[str, Any]:
        """
        Sync every channel matching the request.

        Returns:
            dict with success, runs, totals and message

        Raises:
            NotFoundError: Requested channel does not exist
            ValidationError: Requested channel does not match the platform
        """
        request = request or SyncRequest()
        channels = self._select_channels(request)

        if not channels:
            if request.channel_id:
                channel = self.store.get_channel(request.channel_id)
                if channel is None:
                    raise NotFoundError(
                        f"Marketplace channel {request.channel_id} not found",
                        resource="channel",
                        resource_id=request.channel_id,
                    )
                if request.platform and channel.platform != request.platform:
                    raise ValidationError(
                        f"Marketplace channel {channel.name} does not match requested platform",
                        field="platform",
                        value=request.platform,
                    )

            return {
                "success": True,
                "runs": [],
                "totals": SyncCounts().as_dict(),
                "message": NO_CHANNELS_MESSAGE,
            }

        runs = [self._sync_channel(channel, request) for channel in channels]
        result = summarize_sync(runs)
        logger.info(f"Marketplace sync finished: {result['message']} {result['totals']}")
        return result

    def due_channels(self, now: Optional[datetime] = None) -> List[MarketplaceChannel]:
        """Enabled, active channels whose sync interval has elapsed."""
        now = now or utcnow()
        due = []
        for channel in self.store.list_channels():
            if not channel.sync_enabled or channel.status != ChannelStatus.ACTIVE.value:
                continue
            if channel.last_synced_at is None:
                due.append(channel)
                continue
            frequency = channel.sync_frequency_minutes or DEFAULT_SYNC_FREQUENCY_MINUTES
            if now - channel.last_synced_at >= timedelta(minutes=frequency):
                due.append(channel)
        return due

    def sync_due_channels(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Scheduled entry point: sync each channel that is due."""
        channels = self.due_channels(now)
        if not channels:
            logger.debug("No marketplace channels due for sync")
            return {
                "success": True,
                "runs": [],
                "totals": SyncCounts().as_dict(),
                "message": NO_CHANNELS_MESSAGE,
            }

        request = SyncRequest(source=SyncSource.SCHEDULED.value)
        runs = [self._sync_channel(channel, request) for channel in channels]
        return summarize_sync(runs)

    def _select_channels(self, request: SyncRequest) -> List[MarketplaceChannel]:
        channels = self.store.list_channels()
        if request.channel_id:
            channels = [c for c in channels if c.id == request.channel_id]
        if request.platform:
            channels = [c for c in channels if c.platform == request.platform]
        if not request.channel_id:
            channels = [c for c in channels if c.sync_enabled]
        return channels

    def _sync_channel(self, channel: MarketplaceChannel, request: SyncRequest) -> MarketplaceSyncRun:
        run = self.store.start_sync_run(channel.id, request.source, request.options)
        self.store.record_channel_sync(channel, SyncStatus.RUNNING.value, "Sync in progress")
        counts = SyncCounts()
        start_time = time.time()

        try:
            logger.info(f"Starting marketplace sync for {channel.name} ({channel.platform})")

            client = self.client_factory(channel)
            result = client.fetch_orders(request.options)
            logger.info(f"Fetched {len(result.orders)} orders from {client.marketplace_name} for {channel.slug}")

            for order_input in result.orders:
                try:
                    recorded = self.store.record_order(channel.id, order_input)
                    if recorded.created:
                        counts.imported += 1
                    elif recorded.updated:
                        counts.updated += 1
                    else:
                        counts.skipped += 1
                except Exception as e:
                    counts.errors += 1
                    self.db.rollback()
                    logger.error(
                        f"Failed to record marketplace order {order_input.external_id} "
                        f"for channel {channel.name}: {e}"
                    )

            counts.errors += result.rejected
            for warning in result.warnings:
                logger.warning(f"Marketplace sync warning ({channel.slug}): {warning}")

            status = SyncStatus.ERROR.value if counts.errors else SyncStatus.SUCCESS.value
            message = (
                f"Sync completed with {counts.errors} error(s)."
                if counts.errors
                else f"Imported {counts.imported} order(s), updated {counts.updated}."
            )
            metadata = {"warnings": result.warnings, "order_count": len(result.orders)}
            if result.rejected:
                metadata["rejected"] = result.rejected
            completed = self.store.complete_sync_run(run.id, status, counts, message, metadata)
            self.store.record_channel_sync(channel, status, message)

        except StorefrontError as e:
            completed = self._fail_run(channel, run, counts, e.message)
        except Exception as e:
            completed = self._fail_run(channel, run, counts, str(e) or "Marketplace sync failed.")

        self.metrics.track_sync_run(
            platform=channel.platform,
            status=completed.status,
            duration=time.time() - start_time,
            **counts.as_dict(),
        )
        logger.info(
            f"Marketplace sync for {channel.slug} finished with status {completed.status}: {completed.message}"
        )
        return completed

    def _fail_run(self, channel: MarketplaceChannel, run: MarketplaceSyncRun, counts: SyncCounts,
                  message: str) -> MarketplaceSyncRun:
        counts.errors += 1
        logger.error(f"Marketplace sync failed for {channel.name}: {message}")
        self.db.rollback()
        completed = self.store.complete_sync_run(run.id, SyncStatus.ERROR.value, counts, message, {"error": message})
        self.store.record_channel_sync(channel, SyncStatus.ERROR.value, message)
        return completed
