"""
Abstract base class for marketplace API clients.

Provides a unified interface for the integration providers that pull
orders from external sales channels, plus the normalized order types every
provider returns.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional


@dataclass
class MarketplaceCredentials:
    """Base credentials for marketplace authentication."""
    pass


@dataclass
class SellbriteCredentials(MarketplaceCredentials):
    """Sellbrite API credentials (HTTP Basic)."""
    api_key: str
    api_secret: str


@dataclass
class MarketplaceSyncOptions:
    """Window and size of an order pull."""
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass
class MarketplaceOrderItemInput:
    """Normalized order line."""
    title: str
    sku: Optional[str] = None
    quantity: int = 1
    unit_price: float = 0.0
    total_price: float = 0.0
    marketplace_fee: Optional[float] = None
    data: Optional[Dict[str, Any]] = None


@dataclass
class MarketplaceOrderInput:
    """Normalized order as returned by a provider and stored by the order store."""
    external_id: str
    purchase_date: datetime
    external_number: Optional[str] = None
    status: str = "pending"
    financial_status: str = "pending"
    fulfillment_status: str = "unfulfilled"
    acknowledged_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    currency: str = "USD"
    subtotal: float = 0.0
    shipping: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    marketplace_fees: Optional[float] = None
    promo_codes: Optional[List[str]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    items: List[MarketplaceOrderItemInput] = field(default_factory=list)


@dataclass
class ProviderOrdersResult:
    """Orders fetched from a provider plus any warnings it reported.

    ``rejected`` counts raw orders that could not be normalized.
    """
    orders: List[MarketplaceOrderInput] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    meta: Optional[Dict[str, Any]] = None
    rejected: int = 0


class MarketplaceClient(ABC):
    """
    Abstract marketplace client interface.

    All integrations must implement this interface so the sync service can
    treat every channel the same way.
    """

    def __init__(self, credentials: MarketplaceCredentials):
        """
        Initialize marketplace client with credentials.

        Args:
            credentials: Provider-specific credentials
        """
        self.credentials = credentials

    @abstractmethod
    def fetch_orders(self, options: MarketplaceSyncOptions) -> ProviderOrdersResult:
        """
        Fetch orders created within the options' window.

        Returns:
            ProviderOrdersResult with normalized orders
        """
        pass

    @abstractmethod
    def test_connection(self) -> Dict[str, Any]:
        """
        Test API connectivity and credentials.

        Returns:
            Dict with connection test results
        """
        pass

    @property
    @abstractmethod
    def marketplace_name(self) -> str:
        """Get integration provider name."""
        pass
