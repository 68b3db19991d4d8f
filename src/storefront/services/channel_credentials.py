"""
Encryption of marketplace channel credentials.

Secret values are stored Fernet-encrypted inside the channel's JSON
credentials column; non-secret values (e.g. seller ids) are kept as-is.
"""

from typing import Any, Dict, Optional

from cryptography.fernet import InvalidToken

from storefront.security.encryption import get_encryptor
from storefront.utils.exceptions import ConfigurationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


SECRET_CREDENTIAL_KEYS = ("apiKey", "apiSecret", "accessToken", "refreshToken")
ENCRYPTED_PREFIX = "enc:"
MASK = "********"


def encrypt_channel_credentials(credentials: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Encrypt secret values; already-encrypted values are left untouched."""
    if not credentials:
        return None

    encryptor = get_encryptor()
    stored = {}
    for key, value in credentials.items():
        if key in SECRET_CREDENTIAL_KEYS and isinstance(value, str) and value:
            if not value.startswith(ENCRYPTED_PREFIX):
                value = ENCRYPTED_PREFIX + encryptor.encrypt(value)
        stored[key] = value
    return stored


def decrypt_channel_credentials(credentials: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Plaintext credentials for provider use.

    Raises:
        ConfigurationError: If a stored secret cannot be decrypted
    """
    if not credentials:
        return {}

    encryptor = get_encryptor()
    plain = {}
    for key, value in credentials.items():
        if isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX):
            try:
                value = encryptor.decrypt(value[len(ENCRYPTED_PREFIX):])
            except InvalidToken:
                raise ConfigurationError(
                    f"Stored channel credential '{key}' cannot be decrypted - check ENCRYPTION_MASTER_KEY"
                )
        plain[key] = value
    return plain


def mask_channel_credentials(credentials: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Credentials safe to return from the API."""
    if not credentials:
        return None
    return {
        key: (MASK if key in SECRET_CREDENTIAL_KEYS and value else value)
        for key, value in credentials.items()
    }
