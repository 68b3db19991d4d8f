"""
Encryption utilities for securing sensitive stored values.

Uses Fernet symmetric encryption with master key rotation support. The keys
come from ENCRYPTION_MASTER_KEY and the optional ENCRYPTION_SECONDARY_KEY.
"""

from typing import List, Optional

from cryptography.fernet import Fernet, MultiFernet, InvalidToken

from storefront.utils.config import get_config
from storefront.utils.exceptions import ConfigurationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


class CredentialEncryptor:
    """
    Encrypts and decrypts sensitive values using Fernet.

    Supports key rotation through MultiFernet: values encrypted with the
    secondary key still decrypt while new values use the primary key.
    """

    def __init__(self, master_key: Optional[str] = None, secondary_key: Optional[str] = None):
        """
        Initialize encryptor with master key.

        Args:
            master_key: Base64-encoded Fernet key. If None, loads from config.
            secondary_key: Previous key kept for decryption during rotation.
        """
        config = get_config()
        self.master_key = master_key or config.encryption_master_key
        self.secondary_key = secondary_key or config.encryption_secondary_key

        if not self.master_key:
            raise ConfigurationError(
                "ENCRYPTION_MASTER_KEY environment variable is required. "
                "Generate one with: storefront generate-key"
            )

        self.keys = self._load_keys()
        self.fernet = MultiFernet([Fernet(key) for key in self.keys])

        logger.info(f"Initialized credential encryptor with {len(self.keys)} key(s)")

    def _load_keys(self) -> List[bytes]:
        keys = [self.master_key.encode()]
        if self.secondary_key:
            keys.append(self.secondary_key.encode())
            logger.info("Secondary encryption key loaded for rotation")
        return keys

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext string.

        Args:
            plaintext: String to encrypt

        Returns:
            Base64-encoded encrypted string
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        return self.fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt ciphertext string.

        Raises:
            InvalidToken: If decryption fails
        """
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")

        try:
            return self.fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.error("Decryption failed - invalid token or corrupted data")
            raise

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a value under the primary key."""
        return self.fernet.rotate(ciphertext.encode()).decode()

    @staticmethod
    def generate_key() -> str:
        """
        Generate a new Fernet encryption key.

        Returns:
            Base64-encoded Fernet key
        """
        return Fernet.generate_key().decode()


# Global encryptor instance
_encryptor: Optional[CredentialEncryptor] = None


def get_encryptor() -> CredentialEncryptor:
    """Get or create global encryptor instance."""
    global _encryptor
    if _encryptor is None:
        _encryptor = CredentialEncryptor()
    return _encryptor


def reset_encryptor() -> None:
    """Drop the cached encryptor so the next call re-reads configuration."""
    global _encryptor
    _encryptor = None
