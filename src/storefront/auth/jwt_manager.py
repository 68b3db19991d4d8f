"""
JWT token management for authentication.

Tokens are issued by the storefront's account service; this backend only
needs to verify them and, for tooling and tests, mint access tokens with
the same claims (sub, role, email, name).
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import uuid

from jose import JWTError, jwt

from storefront.utils.config import get_config
from storefront.utils.exceptions import ConfigurationError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


class JWTManager:
    """Manages JWT token creation and verification (HS256)."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: str = "HS256",
        access_token_expire_minutes: Optional[int] = None,
    ):
        """
        Initialize JWT manager.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: Signing algorithm
            access_token_expire_minutes: Access token TTL in minutes
        """
        config = get_config()
        self.secret_key = secret_key or config.secret_key
        if not self.secret_key:
            raise ConfigurationError("SECRET_KEY environment variable is required for JWT")

        self.algorithm = algorithm
        self.access_token_expire = timedelta(
            minutes=access_token_expire_minutes or config.access_token_expire_minutes
        )

        logger.info(f"Initialized JWT manager (algorithm={algorithm}, access_ttl={self.access_token_expire})")

    def create_access_token(
        self,
        user_id: str,
        role: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        additional_claims: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Create access token for an authenticated user.

        Args:
            user_id: Account id of the user
            role: "admin" or "customer"
            email: Account email
            name: Display name
            additional_claims: Optional additional claims to include

        Returns:
            JWT access token string
        """
        now = datetime.utcnow()
        payload = {
            "sub": user_id,
            "role": role,
            "type": "access",
            "iat": now,
            "exp": now + self.access_token_expire,
            "jti": str(uuid.uuid4()),
        }
        if email:
            payload["email"] = email
        if name:
            payload["name"] = name
        if additional_claims:
            payload.update(additional_claims)

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Created access token for user {user_id} (expires in {self.access_token_expire})")
        return token

    def verify_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Verify and decode JWT token.

        Raises:
            JWTError: If token is invalid, expired or of the wrong type
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])

            if payload.get("type") != token_type:
                raise JWTError(f"Invalid token type: expected {token_type}, got {payload.get('type')}")

            return payload

        except JWTError as e:
            logger.warning(f"Token verification failed: {e}")
            raise


# Global JWT manager instance
_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get or create global JWT manager instance."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


def reset_jwt_manager() -> None:
    """Drop the cached manager so the next call re-reads configuration."""
    global _jwt_manager
    _jwt_manager = None


def create_access_token(user_id: str, role: str, email: Optional[str] = None,
                        name: Optional[str] = None) -> str:
    """Convenience function to create access token."""
    return get_jwt_manager().create_access_token(user_id, role, email=email, name=name)


def verify_token(token: str, token_type: str = "access") -> Dict[str, Any]:
    """Convenience function to verify token."""
    return get_jwt_manager().verify_token(token, token_type)
