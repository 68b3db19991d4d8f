"""
Factory for creating marketplace clients based on channel configuration.
"""

from storefront.database.models import MarketplaceChannel
from storefront.marketplaces.base import MarketplaceClient
from storefront.marketplaces.sellbrite_client import (
    SellbriteMarketplaceClient,
    resolve_sellbrite_credentials,
)
from storefront.services.channel_credentials import decrypt_channel_credentials
from storefront.utils.exceptions import ConfigurationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_INTEGRATION = "sellbrite"


def create_marketplace_client(channel: MarketplaceChannel) -> MarketplaceClient:
    """
    Create the integration client for a channel.

    The integration is read from ``channel.settings["integration"]`` and
    defaults to Sellbrite. Stored credentials are decrypted here.

    Raises:
        ConfigurationError: If the integration is unsupported or credentials
            are missing
    """
    settings = channel.settings or {}
    integration = (settings.get("integration") or DEFAULT_INTEGRATION).lower()

    if integration == "sellbrite":
        credentials = resolve_sellbrite_credentials(
            channel.name, decrypt_channel_credentials(channel.credentials)
        )
        identifier = settings.get("channel_identifier")
        logger.debug(f"Creating Sellbrite client for channel {channel.slug}")
        return SellbriteMarketplaceClient(
            credentials,
            channel_identifier=identifier if isinstance(identifier, str) else None,
        )

    raise ConfigurationError(
        f"Unsupported marketplace integration: {integration}",
        {"channel_id": channel.id},
    )
