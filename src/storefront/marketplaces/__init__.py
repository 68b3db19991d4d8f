"""
Marketplace integration clients.
"""

from .base import (
    MarketplaceClient,
    MarketplaceCredentials,
    SellbriteCredentials,
    MarketplaceSyncOptions,
    MarketplaceOrderInput,
    MarketplaceOrderItemInput,
    ProviderOrdersResult,
)
from .factory import create_marketplace_client

__all__ = [
    "MarketplaceClient",
    "MarketplaceCredentials",
    "SellbriteCredentials",
    "MarketplaceSyncOptions",
    "MarketplaceOrderInput",
    "MarketplaceOrderItemInput",
    "ProviderOrdersResult",
    "create_marketplace_client",
]
