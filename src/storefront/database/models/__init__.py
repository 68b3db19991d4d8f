"""
SQLAlchemy database models for the Storefront backend.

Models:
- Affiliate, AffiliateApplication: program membership and applications
- AffiliateClick, AffiliateConversion: referral tracking and attribution
- AffiliatePayout, AffiliateSettings: payouts and program settings
- MarketplaceChannel: external sales channels
- MarketplaceOrder, MarketplaceOrderItem, MarketplaceOrderEvent: imported orders
- MarketplaceSyncRun: sync run history
- MarketplaceTaxState: marketplace-collected tax states per channel
"""

from .base import Base, utcnow, generate_id
from .affiliate import (
    Affiliate,
    AffiliateApplication,
    AffiliateClick,
    AffiliateConversion,
    AffiliatePayout,
    AffiliateSettings,
    AffiliateStatus,
    ApplicationStatus,
    CommissionStatus,
    CommissionType,
    PayoutMethod,
    PayoutSchedule,
    PayoutStatus,
)
from .marketplace import (
    MarketplaceChannel,
    MarketplaceOrder,
    MarketplaceOrderItem,
    MarketplaceOrderEvent,
    MarketplaceSyncRun,
    MarketplaceTaxState,
    MarketplacePlatform,
    ChannelStatus,
    SyncStatus,
    SyncSource,
    OrderStatus,
    FinancialStatus,
    FulfillmentStatus,
)

__all__ = [
    "Base",
    "utcnow",
    "generate_id",
    "Affiliate",
    "AffiliateApplication",
    "AffiliateClick",
    "AffiliateConversion",
    "AffiliatePayout",
    "AffiliateSettings",
    "AffiliateStatus",
    "ApplicationStatus",
    "CommissionStatus",
    "CommissionType",
    "PayoutMethod",
    "PayoutSchedule",
    "PayoutStatus",
    "MarketplaceChannel",
    "MarketplaceOrder",
    "MarketplaceOrderItem",
    "MarketplaceOrderEvent",
    "MarketplaceSyncRun",
    "MarketplaceTaxState",
    "MarketplacePlatform",
    "ChannelStatus",
    "SyncStatus",
    "SyncSource",
    "OrderStatus",
    "FinancialStatus",
    "FulfillmentStatus",
]
