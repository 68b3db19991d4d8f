"""
Marketplace ingestion models.

Channels describe external sales channels synced through an integration
provider. Orders are keyed by (channel_id, external_id) and carry a
deterministic id so that re-importing the same order updates it in place.
"""

import enum
from functools import partial

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow, generate_id, in_check


class MarketplacePlatform(str, enum.Enum):
    AMAZON = "amazon"
    EBAY = "ebay"
    WALMART = "walmart"


class ChannelStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"
    ERROR = "error"


class SyncStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class SyncSource(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class FinancialStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    REFUNDED = "refunded"
    VOIDED = "voided"


class FulfillmentStatus(str, enum.Enum):
    UNFULFILLED = "unfulfilled"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"


class MarketplaceChannel(Base):
    """External sales channel."""

    __tablename__ = "marketplace_channels"

    # Primary Key
    id = Column(String(64), primary_key=True, default=partial(generate_id, "mpch"))

    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    platform = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=ChannelStatus.INACTIVE.value)

    # Sync configuration
    sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_frequency_minutes = Column(Integer, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    last_successful_sync_at = Column(DateTime, nullable=True)
    last_sync_status = Column(String(20), nullable=True)
    last_sync_message = Column(Text, nullable=True)

    # Integration (secret values are Fernet-encrypted)
    credentials = Column(JSON, nullable=True)
    settings = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    orders = relationship("MarketplaceOrder", back_populates="channel", cascade="all, delete-orphan", passive_deletes=True)
    tax_states = relationship("MarketplaceTaxState", back_populates="channel", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(in_check("platform", MarketplacePlatform), name="ck_marketplace_channels_platform"),
        CheckConstraint(in_check("status", ChannelStatus), name="ck_marketplace_channels_status"),
    )

    def __repr__(self):
        return f"<MarketplaceChannel(id={self.id}, slug='{self.slug}', platform='{self.platform}')>"


class MarketplaceOrder(Base):
    """Order imported from a marketplace channel."""

    __tablename__ = "marketplace_orders"

    # Deterministic: mp_{channel_id}_{external_id}
    id = Column(String(255), primary_key=True)
    channel_id = Column(String(64), ForeignKey("marketplace_channels.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)
    external_id = Column(String(255), nullable=False)
    external_number = Column(String(255), nullable=True)

    # Statuses
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    financial_status = Column(String(20), nullable=False, default=FinancialStatus.PENDING.value)
    fulfillment_status = Column(String(20), nullable=False, default=FulfillmentStatus.UNFULFILLED.value)

    # Timestamps
    purchase_date = Column(DateTime, nullable=False)
    imported_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)

    # Customer
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)

    # Money
    currency = Column(String(8), nullable=False, default="USD")
    subtotal = Column(Float, nullable=False, default=0.0)
    shipping = Column(Float, nullable=False, default=0.0)
    tax = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    marketplace_fees = Column(Float, nullable=True)

    promo_codes = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    data = Column(JSON, nullable=True)

    channel = relationship("MarketplaceChannel", back_populates="orders")

    @property
    def channel_name(self):
        return self.channel.name if self.channel is not None else None

    items = relationship(
        "MarketplaceOrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="MarketplaceOrderItem.title",
    )
    events = relationship(
        "MarketplaceOrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="MarketplaceOrderEvent.event_time",
    )

    __table_args__ = (
        UniqueConstraint("channel_id", "external_id", name="uq_marketplace_orders_channel_external"),
        CheckConstraint(in_check("status", OrderStatus), name="ck_marketplace_orders_status"),
        CheckConstraint(in_check("financial_status", FinancialStatus), name="ck_marketplace_orders_financial"),
        CheckConstraint(in_check("fulfillment_status", FulfillmentStatus), name="ck_marketplace_orders_fulfillment"),
        Index("ix_marketplace_orders_purchase_date", "purchase_date"),
        Index("ix_marketplace_orders_platform", "platform"),
        Index("ix_marketplace_orders_status", "status"),
    )

    def __repr__(self):
        return f"<MarketplaceOrder(id={self.id}, status='{self.status}', total={self.total})>"


class MarketplaceOrderItem(Base):
    """Line item of a marketplace order; replaced wholesale on re-import."""

    __tablename__ = "marketplace_order_items"

    id = Column(String(255), primary_key=True)
    order_id = Column(String(255), ForeignKey("marketplace_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(255), nullable=True)
    title = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)
    marketplace_fee = Column(Float, nullable=True)
    data = Column(JSON, nullable=True)

    order = relationship("MarketplaceOrder", back_populates="items")

    def __repr__(self):
        return f"<MarketplaceOrderItem(id={self.id}, sku='{self.sku}', qty={self.quantity})>"


class MarketplaceOrderEvent(Base):
    """Audit trail entry for an imported order."""

    __tablename__ = "marketplace_order_events"

    id = Column(String(64), primary_key=True, default=partial(generate_id, "mpevt"))
    order_id = Column(String(255), ForeignKey("marketplace_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    event_time = Column(DateTime, default=utcnow, nullable=False)
    message = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)

    order = relationship("MarketplaceOrder", back_populates="events")

    def __repr__(self):
        return f"<MarketplaceOrderEvent(order_id={self.order_id}, type='{self.event_type}')>"


class MarketplaceSyncRun(Base):
    """Bookkeeping record of one sync pass against a channel."""

    __tablename__ = "marketplace_sync_runs"

    id = Column(String(64), primary_key=True, default=partial(generate_id, "mpsync"))
    channel_id = Column(String(64), ForeignKey("marketplace_channels.id", ondelete="SET NULL"), nullable=True)
    platform = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default=SyncStatus.RUNNING.value)
    source = Column(String(20), nullable=False, default=SyncSource.MANUAL.value)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Counts
    imported_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)

    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    run_metadata = Column("metadata", JSON, nullable=True)

    channel = relationship("MarketplaceChannel")

    @property
    def channel_name(self):
        return self.channel.name if self.channel is not None else None

    __table_args__ = (
        CheckConstraint(in_check("status", SyncStatus), name="ck_marketplace_sync_runs_status"),
        CheckConstraint(in_check("source", SyncSource), name="ck_marketplace_sync_runs_source"),
        Index("ix_marketplace_sync_runs_started", "started_at"),
    )

    def __repr__(self):
        return f"<MarketplaceSyncRun(id={self.id}, channel_id={self.channel_id}, status='{self.status}')>"


class MarketplaceTaxState(Base):
    """State in which the marketplace collects tax for a channel."""

    __tablename__ = "marketplace_tax_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(String(64), ForeignKey("marketplace_channels.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(20), nullable=False)
    state_code = Column(String(8), nullable=False)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    channel = relationship("MarketplaceChannel", back_populates="tax_states")

    __table_args__ = (
        UniqueConstraint("channel_id", "state_code", name="uq_marketplace_tax_states_channel_state"),
    )

    def __repr__(self):
        return f"<MarketplaceTaxState(channel_id={self.channel_id}, state='{self.state_code}')>"
