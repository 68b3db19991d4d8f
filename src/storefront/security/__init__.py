"""
Encryption of stored secrets (payout bank details, channel credentials).
"""

from .encryption import CredentialEncryptor, get_encryptor, reset_encryptor

__all__ = ["CredentialEncryptor", "get_encryptor", "reset_encryptor"]
