"""
Marketplace order store.

Persists channels, imported orders, sync runs and marketplace tax states,
and produces the reporting views used by the admin console. Orders are
upserted idempotently: the same (channel, external id) always maps to the
same order row, and re-importing replaces its items.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.database.models import (
    ChannelStatus,
    FinancialStatus,
    FulfillmentStatus,
    MarketplaceChannel,
    MarketplaceOrder,
    MarketplaceOrderEvent,
    MarketplaceOrderItem,
    MarketplacePlatform,
    MarketplaceSyncRun,
    MarketplaceTaxState,
    OrderStatus,
    SyncSource,
    SyncStatus,
    utcnow,
)
from storefront.marketplaces.base import MarketplaceOrderInput, MarketplaceSyncOptions
from storefront.services.channel_credentials import MASK, encrypt_channel_credentials
from storefront.utils.dates import isoformat, parse_datetime
from storefront.utils.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from storefront.utils.logger import get_logger
from storefront.utils.sanitize import sanitize_input

logger = get_logger(__name__)


DEFAULT_PAGE_SIZE = 25
DEFAULT_HISTORY_LIMIT = 20
RECENT_ORDERS_LIMIT = 10

TREND_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}

SYNC_SUCCESS_MESSAGE = "Marketplace sync completed successfully."
SYNC_ERROR_MESSAGE = "Marketplace sync completed with errors."


@dataclass
class ChannelInput:
    """New marketplace channel."""
    name: str
    slug: str
    platform: str
    status: str = ChannelStatus.INACTIVE.value
    sync_enabled: bool = True
    sync_frequency_minutes: Optional[int] = None
    credentials: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None


@dataclass
class OrderFilters:
    """Order list filters; ``status='any'`` disables the status filter."""
    channel_id: Optional[str] = None
    platform: Optional[str] = None
    status: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    search: Optional[str] = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0


@dataclass
class RecordOrderResult:
    created: bool
    updated: bool
    order: MarketplaceOrder


@dataclass
class SyncCounts:
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def order_id_for(channel_id: str, external_id: str) -> str:
    return f"mp_{channel_id}_{external_id}"


def item_id_for(order_id: str, sku: Optional[str], index: int) -> str:
    return f"mpi_{order_id}_{sku or f'item{index}'}_{index}"


def summarize_sync(runs: List[MarketplaceSyncRun]) -> Dict[str, Any]:
    """Aggregate the outcome of several sync runs."""
    totals = SyncCounts()
    for run in runs:
        totals.imported += run.imported_count or 0
        totals.updated += run.updated_count or 0
        totals.skipped += run.skipped_count or 0
        totals.errors += run.error_count or 0

    success = all(run.status != SyncStatus.ERROR.value for run in runs)
    return {
        "success": success,
        "runs": runs,
        "totals": totals.as_dict(),
        "message": SYNC_SUCCESS_MESSAGE if success else SYNC_ERROR_MESSAGE,
    }


def _check_choice(field_name: str, value: str, choices) -> None:
    allowed = [c.value for c in choices]
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field_name}: {value}",
            field=field_name,
            value=value,
            expected_type=" | ".join(allowed),
        )


class MarketplaceOrderStore:
    """Marketplace persistence bound to a database session."""

    CHANNEL_FIELDS = (
        "name", "slug", "platform", "status", "sync_enabled",
        "sync_frequency_minutes", "credentials", "settings",
    )

    def __init__(self, db_session: Session):
        self.db = db_session

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def list_channels(self) -> List[MarketplaceChannel]:
        return self.db.query(MarketplaceChannel).order_by(MarketplaceChannel.name).all()

    def get_channel(self, channel_id: str) -> Optional[MarketplaceChannel]:
        return self.db.get(MarketplaceChannel, channel_id)

    def get_channel_by_slug(self, slug: str) -> Optional[MarketplaceChannel]:
        return self.db.query(MarketplaceChannel).filter(MarketplaceChannel.slug == slug).first()

    def require_channel(self, channel_id: str) -> MarketplaceChannel:
        channel = self.get_channel(channel_id)
        if channel is None:
            raise NotFoundError("Marketplace channel not found", resource="channel", resource_id=channel_id)
        return channel

    def create_channel(self, data: ChannelInput) -> MarketplaceChannel:
        """
        Create a channel; secrets in ``credentials`` are encrypted.

        Raises:
            ValidationError: Invalid platform, status or empty name/slug
            ConflictError: Slug already used
        """
        name = sanitize_input(data.name)
        slug = (data.slug or "").strip().lower()
        if not name or not slug:
            raise ValidationError("Channel name and slug are required")
        _check_choice("platform", data.platform, MarketplacePlatform)
        _check_choice("status", data.status, ChannelStatus)
        self._check_frequency(data.sync_frequency_minutes)

        if self.get_channel_by_slug(slug):
            raise ConflictError(f"A channel with slug '{slug}' already exists", {"slug": slug})

        channel = MarketplaceChannel(
            name=name,
            slug=slug,
            platform=data.platform,
            status=data.status,
            sync_enabled=data.sync_enabled,
            sync_frequency_minutes=data.sync_frequency_minutes,
            credentials=encrypt_channel_credentials(data.credentials),
            settings=data.settings or None,
            last_sync_status=SyncStatus.IDLE.value,
        )
        self.db.add(channel)
        self._commit("create", "marketplace_channels", conflict_message=f"A channel with slug '{slug}' already exists")
        self.db.refresh(channel)
        logger.info(f"Marketplace channel {channel.slug} ({channel.platform}) created")
        return channel

    def update_channel(self, channel_id: str, changes: Dict[str, Any]) -> MarketplaceChannel:
        """Partial update; keys outside the channel's editable fields are rejected."""
        channel = self.require_channel(channel_id)

        unknown = set(changes) - set(self.CHANNEL_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown channel fields: {', '.join(sorted(unknown))}")

        if "platform" in changes:
            _check_choice("platform", changes["platform"], MarketplacePlatform)
        if "status" in changes:
            _check_choice("status", changes["status"], ChannelStatus)
        if "sync_frequency_minutes" in changes:
            self._check_frequency(changes["sync_frequency_minutes"])

        for key, value in changes.items():
            if key == "name":
                value = sanitize_input(value)
                if not value:
                    raise ValidationError("Channel name cannot be empty", field="name")
            elif key == "slug":
                value = (value or "").strip().lower()
                if not value:
                    raise ValidationError("Channel slug cannot be empty", field="slug")
            elif key == "credentials":
                # Masked values sent back from the API keep the stored secret
                merged = dict(channel.credentials or {})
                for cred_key, cred_value in (value or {}).items():
                    if cred_value != MASK:
                        merged[cred_key] = cred_value
                value = encrypt_channel_credentials(merged) if value is not None else None
            setattr(channel, key, value)

        if "platform" in changes:
            # Orders and tax states carry a copy of the channel platform
            for model in (MarketplaceOrder, MarketplaceTaxState):
                self.db.query(model).filter(model.channel_id == channel.id).update(
                    {"platform": channel.platform}, synchronize_session="fetch"
                )

        self._commit("update", "marketplace_channels", conflict_message="Channel slug already in use")
        self.db.refresh(channel)
        logger.info(f"Marketplace channel {channel.slug} updated: {sorted(changes)}")
        return channel

    def record_channel_sync(
        self,
        channel: MarketplaceChannel,
        status: str,
        message: Optional[str] = None,
        synced_at: Optional[datetime] = None,
    ) -> MarketplaceChannel:
        """Store the outcome of the latest sync on the channel."""
        _check_choice("last_sync_status", status, SyncStatus)
        synced_at = synced_at or utcnow()

        channel.last_sync_status = status
        channel.last_sync_message = message
        if status != SyncStatus.RUNNING.value:
            channel.last_synced_at = synced_at
        if status == SyncStatus.SUCCESS.value:
            channel.last_successful_sync_at = synced_at

        self._commit("update", "marketplace_channels")
        return channel

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def record_order(
        self,
        channel_id: str,
        data: MarketplaceOrderInput,
        imported_at: Optional[datetime] = None,
    ) -> RecordOrderResult:
        """
        Insert or update an order keyed by (channel, external id).

        The whole upsert, including item replacement, runs in one transaction.
        """
        channel = self.require_channel(channel_id)
        if not data.external_id:
            raise ValidationError("Order external id is required", field="external_id")
        _check_choice("status", data.status, OrderStatus)
        _check_choice("financial_status", data.financial_status, FinancialStatus)
        _check_choice("fulfillment_status", data.fulfillment_status, FulfillmentStatus)
        purchase_date = parse_datetime(data.purchase_date, field="purchase_date")
        acknowledged_at = parse_datetime(data.acknowledged_at, field="acknowledged_at")

        now = utcnow()
        order_id = order_id_for(channel_id, data.external_id)

        try:
            order = self.db.get(MarketplaceOrder, order_id)
            created = order is None

            if created:
                order = MarketplaceOrder(
                    id=order_id,
                    channel_id=channel_id,
                    platform=channel.platform,
                    external_id=data.external_id,
                    imported_at=imported_at or now,
                    updated_at=imported_at or now,
                )
                self.db.add(order)
                previous_status = None
            else:
                previous_status = order.status
                order.updated_at = now
                order.items.clear()
                # Old items must be gone before rows with the same ids are added
                self.db.flush()

            self._apply_order_fields(order, data, purchase_date, acknowledged_at)
            for index, item in enumerate(data.items):
                order.items.append(
                    MarketplaceOrderItem(
                        id=item_id_for(order_id, item.sku, index),
                        sku=item.sku,
                        title=item.title,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_price=item.total_price,
                        marketplace_fee=item.marketplace_fee if item.marketplace_fee is not None else 0.0,
                        data=item.data,
                    )
                )

            order.events.append(self._order_event(previous_status, data.status, created))
            self.db.commit()

        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record marketplace order {order_id}: {e}")
            raise DatabaseError(f"Failed to record order {data.external_id}", operation="upsert",
                                table="marketplace_orders")
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.debug(f"Marketplace order {order_id} {'created' if created else 'updated'}")
        return RecordOrderResult(created=created, updated=not created, order=order)

    def get_order(self, order_id: str) -> Optional[MarketplaceOrder]:
        return self.db.get(MarketplaceOrder, order_id)

    def list_order_events(self, order_id: str) -> List[MarketplaceOrderEvent]:
        if self.get_order(order_id) is None:
            raise NotFoundError("Marketplace order not found", resource="order", resource_id=order_id)
        return (
            self.db.query(MarketplaceOrderEvent)
            .filter(MarketplaceOrderEvent.order_id == order_id)
            .order_by(MarketplaceOrderEvent.event_time)
            .all()
        )

    def list_orders(self, filters: Optional[OrderFilters] = None) -> Dict[str, Any]:
        """Filtered page of orders, newest purchase first."""
        filters = filters or OrderFilters()
        limit = filters.limit if filters.limit and filters.limit > 0 else DEFAULT_PAGE_SIZE
        offset = max(filters.offset or 0, 0)

        query = self.db.query(MarketplaceOrder)
        if filters.channel_id:
            query = query.filter(MarketplaceOrder.channel_id == filters.channel_id)
        if filters.platform:
            query = query.join(MarketplaceChannel, MarketplaceChannel.id == MarketplaceOrder.channel_id).filter(
                MarketplaceChannel.platform == filters.platform
            )
        if filters.status and filters.status != "any":
            query = query.filter(MarketplaceOrder.status == filters.status)
        query = self._date_window(query, filters.from_date, filters.to_date)
        if filters.search:
            like = f"%{filters.search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(MarketplaceOrder.external_id).like(like),
                    func.lower(MarketplaceOrder.external_number).like(like),
                    func.lower(MarketplaceOrder.customer_email).like(like),
                    func.lower(MarketplaceOrder.customer_name).like(like),
                )
            )

        total = query.count()
        orders = (
            query.options(selectinload(MarketplaceOrder.items), selectinload(MarketplaceOrder.channel))
            .order_by(MarketplaceOrder.purchase_date.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

        return {
            "orders": orders,
            "total": total,
            "page": offset // limit + 1,
            "page_size": limit,
        }

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    def start_sync_run(
        self,
        channel_id: Optional[str] = None,
        source: str = SyncSource.MANUAL.value,
        options: Optional[MarketplaceSyncOptions] = None,
    ) -> MarketplaceSyncRun:
        _check_choice("source", source, SyncSource)
        options = options or MarketplaceSyncOptions()
        channel = self.get_channel(channel_id) if channel_id else None

        run = MarketplaceSyncRun(
            channel_id=channel.id if channel else None,
            platform=channel.platform if channel else None,
            status=SyncStatus.RUNNING.value,
            source=source,
            started_at=utcnow(),
            run_metadata={
                "since": isoformat(options.since),
                "until": isoformat(options.until),
                "limit": options.limit,
            },
        )
        self.db.add(run)
        self._commit("insert", "marketplace_sync_runs")
        self.db.refresh(run)
        return run

    def append_sync_run_counts(self, run_id: str, delta: SyncCounts) -> MarketplaceSyncRun:
        run = self._require_run(run_id)
        self._add_counts(run, delta)
        self._commit("update", "marketplace_sync_runs")
        return run

    def complete_sync_run(
        self,
        run_id: str,
        status: str,
        counts: Optional[SyncCounts] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MarketplaceSyncRun:
        """Finish a run; counts are added to any already appended."""
        _check_choice("status", status, SyncStatus)
        run = self._require_run(run_id)

        run.status = status
        run.completed_at = utcnow()
        self._add_counts(run, counts or SyncCounts())
        run.message = message
        if metadata is not None:
            run.run_metadata = metadata

        self._commit("update", "marketplace_sync_runs")
        self.db.refresh(run)
        return run

    def get_sync_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[MarketplaceSyncRun]:
        return (
            self.db.query(MarketplaceSyncRun)
            .options(selectinload(MarketplaceSyncRun.channel))
            .order_by(MarketplaceSyncRun.started_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Tax states
    # ------------------------------------------------------------------

    def list_tax_states(self, channel_id: Optional[str] = None) -> List[MarketplaceTaxState]:
        query = self.db.query(MarketplaceTaxState)
        if channel_id:
            query = query.filter(MarketplaceTaxState.channel_id == channel_id)
        return query.order_by(MarketplaceTaxState.state_code).all()

    def add_tax_state(self, channel_id: str, state_code: str) -> MarketplaceTaxState:
        """Add a state for a channel; adding an existing state returns it unchanged."""
        channel = self.require_channel(channel_id)
        code = (state_code or "").strip().upper()
        if not code or len(code) > 8:
            raise ValidationError("Invalid state code", field="state_code", value=state_code)

        existing = (
            self.db.query(MarketplaceTaxState)
            .filter(MarketplaceTaxState.channel_id == channel_id, MarketplaceTaxState.state_code == code)
            .first()
        )
        if existing:
            return existing

        entry = MarketplaceTaxState(channel_id=channel_id, platform=channel.platform, state_code=code)
        self.db.add(entry)
        self._commit("insert", "marketplace_tax_states")
        self.db.refresh(entry)
        return entry

    def remove_tax_state(self, entry_id: int) -> None:
        entry = self.db.get(MarketplaceTaxState, entry_id)
        if entry is None:
            return
        self.db.delete(entry)
        self._commit("delete", "marketplace_tax_states")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_summary(self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> Dict[str, Any]:
        """Totals, per-platform and per-channel breakdowns and the newest orders."""
        base = self._date_window(self.db.query(MarketplaceOrder), from_date, to_date)

        total_orders = base.count()
        total_revenue, total_fees = base.with_entities(
            func.sum(MarketplaceOrder.total), func.sum(MarketplaceOrder.marketplace_fees)
        ).one()
        last_synced_at = self.db.query(func.max(MarketplaceChannel.last_synced_at)).scalar()

        platform_rows = (
            base.join(MarketplaceChannel, MarketplaceChannel.id == MarketplaceOrder.channel_id)
            .with_entities(
                MarketplaceChannel.platform,
                func.count(MarketplaceOrder.id),
                func.sum(MarketplaceOrder.total),
                func.sum(MarketplaceOrder.marketplace_fees),
            )
            .group_by(MarketplaceChannel.platform)
            .all()
        )

        revenue = func.sum(MarketplaceOrder.total)
        channel_rows = (
            base.join(MarketplaceChannel, MarketplaceChannel.id == MarketplaceOrder.channel_id)
            .with_entities(
                MarketplaceChannel.id,
                MarketplaceChannel.name,
                func.count(MarketplaceOrder.id),
                revenue,
                func.sum(MarketplaceOrder.marketplace_fees),
                MarketplaceChannel.last_synced_at,
            )
            .group_by(MarketplaceChannel.id, MarketplaceChannel.name, MarketplaceChannel.last_synced_at)
            .order_by(revenue.desc())
            .all()
        )

        recent_orders = (
            base.options(selectinload(MarketplaceOrder.items), selectinload(MarketplaceOrder.channel))
            .order_by(MarketplaceOrder.purchase_date.desc())
            .limit(RECENT_ORDERS_LIMIT)
            .all()
        )

        return {
            "total_orders": total_orders,
            "total_revenue": round(total_revenue or 0, 2),
            "total_fees": round(total_fees or 0, 2),
            "last_sync_at": last_synced_at,
            "orders_by_platform": [
                {
                    "platform": platform,
                    "platform_label": platform.upper(),
                    "order_count": count,
                    "revenue": round(rev or 0, 2),
                    "fees": round(fees or 0, 2),
                }
                for platform, count, rev, fees in platform_rows
            ],
            "orders_by_channel": [
                {
                    "channel_id": channel_id,
                    "name": name,
                    "order_count": count,
                    "revenue": round(rev or 0, 2),
                    "fees": round(fees or 0, 2),
                    "last_synced_at": synced_at,
                }
                for channel_id, name, count, rev, fees, synced_at in channel_rows
            ],
            "recent_orders": recent_orders,
        }

    def get_trends(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        group_by: str = "day",
    ) -> List[Dict[str, Any]]:
        """Order count, revenue and fees per day, week (``YYYY-Www``) or month."""
        if group_by not in TREND_FORMATS:
            raise ValidationError(
                f"Invalid group_by: {group_by}", field="group_by", value=group_by,
                expected_type=" | ".join(TREND_FORMATS),
            )
        fmt = TREND_FORMATS[group_by]

        rows = (
            self._date_window(self.db.query(MarketplaceOrder), from_date, to_date)
            .with_entities(MarketplaceOrder.purchase_date, MarketplaceOrder.total, MarketplaceOrder.marketplace_fees)
            .all()
        )

        buckets: Dict[str, Dict[str, Any]] = {}
        for purchase_date, total, fees in rows:
            period = purchase_date.strftime(fmt)
            bucket = buckets.setdefault(period, {"period": period, "order_count": 0, "revenue": 0.0, "fees": 0.0})
            bucket["order_count"] += 1
            bucket["revenue"] += total or 0
            bucket["fees"] += fees or 0

        points = OrderedDict(sorted(buckets.items()))
        for bucket in points.values():
            bucket["revenue"] = round(bucket["revenue"], 2)
            bucket["fees"] = round(bucket["fees"], 2)
        return list(points.values())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_order_fields(
        order: MarketplaceOrder,
        data: MarketplaceOrderInput,
        purchase_date: Optional[datetime],
        acknowledged_at: Optional[datetime],
    ) -> None:
        order.external_number = data.external_number
        order.status = data.status
        order.financial_status = data.financial_status
        order.fulfillment_status = data.fulfillment_status
        order.purchase_date = purchase_date
        order.acknowledged_at = acknowledged_at
        order.customer_name = data.customer_name
        order.customer_email = data.customer_email
        order.currency = data.currency or "USD"
        order.subtotal = data.subtotal or 0.0
        order.shipping = data.shipping or 0.0
        order.tax = data.tax or 0.0
        order.total = data.total or 0.0
        order.marketplace_fees = data.marketplace_fees if data.marketplace_fees is not None else 0.0
        order.promo_codes = data.promo_codes
        order.shipping_address = data.shipping_address
        order.data = data.data

    @staticmethod
    def _order_event(previous_status: Optional[str], status: str, created: bool) -> MarketplaceOrderEvent:
        if created:
            return MarketplaceOrderEvent(event_type="imported", message="Order imported")
        if previous_status != status:
            return MarketplaceOrderEvent(
                event_type="status_changed",
                message=f"Status changed from {previous_status} to {status}",
                data={"from": previous_status, "to": status},
            )
        return MarketplaceOrderEvent(event_type="updated", message="Order updated from marketplace")

    @staticmethod
    def _date_window(query, from_date: Optional[datetime], to_date: Optional[datetime]):
        if from_date is not None:
            query = query.filter(MarketplaceOrder.purchase_date >= parse_datetime(from_date, field="from"))
        if to_date is not None:
            query = query.filter(MarketplaceOrder.purchase_date <= parse_datetime(to_date, field="to"))
        return query

    @staticmethod
    def _add_counts(run: MarketplaceSyncRun, delta: SyncCounts) -> None:
        run.imported_count = (run.imported_count or 0) + delta.imported
        run.updated_count = (run.updated_count or 0) + delta.updated
        run.skipped_count = (run.skipped_count or 0) + delta.skipped
        run.error_count = (run.error_count or 0) + delta.errors

    @staticmethod
    def _check_frequency(value: Optional[int]) -> None:
        if value is not None and value <= 0:
            raise ValidationError("Sync frequency must be positive", field="sync_frequency_minutes", value=value)

    def _require_run(self, run_id: str) -> MarketplaceSyncRun:
        run = self.db.get(MarketplaceSyncRun, run_id)
        if run is None:
            raise NotFoundError("Sync run not found", resource="sync_run", resource_id=run_id)
        return run

    def _commit(self, operation: str, table: str, conflict_message: Optional[str] = None) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if conflict_message:
                raise ConflictError(conflict_message)
            logger.error(f"Database {operation} on {table} failed: {e}")
            raise DatabaseError(f"Database {operation} failed", operation=operation, table=table)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database {operation} on {table} failed: {e}")
            raise DatabaseError(f"Database {operation} failed", operation=operation, table=table)
