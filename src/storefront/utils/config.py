"""
Configuration management for the Storefront backend.

Provides centralized configuration loading and validation using Pydantic
models. Settings come from environment variables (or a `.env` file) and are
grouped into typed sub-configurations for the database, security,
Sellbrite, scheduler and application concerns.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront.utils.logger import get_logger


logger = get_logger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///./filtersfast.db"
DEFAULT_SELLBRITE_BASE_URL = "https://api.sellbrite.com"


class SellbriteConfig(BaseModel):
    """Sellbrite API configuration."""

    base_url: str = Field(default=DEFAULT_SELLBRITE_BASE_URL, description="Sellbrite API base URL")
    api_key: Optional[str] = Field(default=None, description="Account-level Sellbrite API key")
    api_secret: Optional[str] = Field(default=None, description="Account-level Sellbrite API secret")
    timeout: int = Field(default=30, description="API request timeout in seconds")
    retry_count: int = Field(default=2, description="Number of retry attempts")
    retry_delay: float = Field(default=1.0, description="Backoff factor between retries")
    page_size: int = Field(default=50, description="Default orders per request")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        v = (v or DEFAULT_SELLBRITE_BASE_URL).strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("Sellbrite base URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v


class SchedulerConfig(BaseModel):
    """Background job configuration."""

    enabled: bool = Field(default=False, description="Start scheduler with the API")
    marketplace_sync_interval_minutes: int = Field(
        default=15, description="How often due channels are checked"
    )
    commission_approval_hour: int = Field(
        default=3, description="UTC hour of the daily commission approval job"
    )

    @field_validator('marketplace_sync_interval_minutes')
    @classmethod
    def validate_interval(cls, v):
        if v <= 0:
            raise ValueError("Sync interval must be positive")
        return v

    @field_validator('commission_approval_hour')
    @classmethod
    def validate_hour(cls, v):
        if not 0 <= v <= 23:
            raise ValueError("Commission approval hour must be between 0 and 23")
        return v


class ApplicationConfig(BaseModel):
    """General application configuration."""

    environment: str = Field(default="development", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: str = Field(default="./logs", description="Log files directory")
    debug_mode: bool = Field(default=False, description="Debug mode flag")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class StorefrontConfig(BaseSettings):
    """Main application configuration combining all sub-configurations."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(default=DEFAULT_DATABASE_URL)

    secret_key: Optional[str] = Field(default=None)
    access_token_expire_minutes: int = Field(default=60)
    encryption_master_key: Optional[str] = Field(default=None)
    encryption_secondary_key: Optional[str] = Field(default=None)

    sellbrite_api_base_url: str = Field(default=DEFAULT_SELLBRITE_BASE_URL)
    sellbrite_api_key: Optional[str] = Field(default=None)
    sellbrite_api_secret: Optional[str] = Field(default=None)
    sellbrite_timeout: int = Field(default=30)
    api_retry_count: int = Field(default=2)
    api_retry_delay: float = Field(default=1.0)

    scheduler_enabled: bool = Field(default=False)
    marketplace_sync_interval_minutes: int = Field(default=15)
    commission_approval_hour: int = Field(default=3)

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_dir: str = Field(default="./logs")
    debug_mode: bool = Field(default=False)
    cors_origins: str = Field(default="*")

    @property
    def sellbrite(self) -> SellbriteConfig:
        """Get Sellbrite API configuration."""
        return SellbriteConfig(
            base_url=self.sellbrite_api_base_url,
            api_key=self.sellbrite_api_key or None,
            api_secret=self.sellbrite_api_secret or None,
            timeout=self.sellbrite_timeout,
            retry_count=self.api_retry_count,
            retry_delay=self.api_retry_delay,
        )

    @property
    def scheduler(self) -> SchedulerConfig:
        """Get scheduler configuration."""
        return SchedulerConfig(
            enabled=self.scheduler_enabled,
            marketplace_sync_interval_minutes=self.marketplace_sync_interval_minutes,
            commission_approval_hour=self.commission_approval_hour,
        )

    @property
    def app(self) -> ApplicationConfig:
        """Get application configuration."""
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return ApplicationConfig(
            environment=self.environment,
            log_level=self.log_level,
            log_dir=self.log_dir,
            debug_mode=self.debug_mode,
            cors_origins=origins or ["*"],
        )


# Global configuration instance
_config: Optional[StorefrontConfig] = None


def get_config() -> StorefrontConfig:
    """
    Get the global configuration instance.

    Returns:
        StorefrontConfig: Validated configuration instance.

    Raises:
        ValueError: If configuration validation fails.
    """
    global _config

    if _config is None:
        try:
            _config = StorefrontConfig()
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}")

    return _config


def reload_config() -> StorefrontConfig:
    """
    Reload configuration from environment variables.

    Returns:
        StorefrontConfig: New validated configuration instance.
    """
    global _config
    _config = None
    return get_config()


def validate_configuration() -> Dict[str, Any]:
    """
    Validate current configuration and return status information.

    Secrets are reported only as presence flags.

    Returns:
        Dict containing validation results and configuration summary.
    """
    try:
        config = get_config()
        warnings = []

        if not config.secret_key:
            warnings.append("SECRET_KEY is not set; API authentication will fail")
        if not config.encryption_master_key:
            warnings.append("ENCRYPTION_MASTER_KEY is not set; credentials cannot be encrypted")

        return {
            "valid": True,
            "timestamp": datetime.now().isoformat(),
            "warnings": warnings,
            "summary": {
                "database": {
                    "backend": config.database_url.split(":", 1)[0],
                },
                "security": {
                    "has_secret_key": bool(config.secret_key),
                    "has_encryption_key": bool(config.encryption_master_key),
                    "has_rotation_key": bool(config.encryption_secondary_key),
                    "access_token_expire_minutes": config.access_token_expire_minutes,
                },
                "sellbrite": {
                    "base_url": config.sellbrite.base_url,
                    "timeout": config.sellbrite.timeout,
                    "has_account_credentials": bool(
                        config.sellbrite.api_key and config.sellbrite.api_secret
                    ),
                },
                "scheduler": config.scheduler.model_dump(),
                "application": {
                    "environment": config.app.environment,
                    "log_level": config.app.log_level,
                    "debug_mode": config.app.debug_mode,
                },
            },
        }
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        return {
            "valid": False,
            "timestamp": datetime.now().isoformat(),
            "error": str(e),
        }
