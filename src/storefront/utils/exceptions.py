"""
Custom exceptions for the Storefront backend.

Defines application-specific exception classes for business rule
violations, marketplace API failures, authentication and persistence errors.
The API error middleware maps each class to an HTTP status.
"""

from typing import Optional, Dict, Any


class StorefrontError(Exception):
    """Base exception for all Storefront errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and optional details.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(StorefrontError):
    """Raised when configuration is invalid or missing."""
    pass


class AuthenticationError(StorefrontError):
    """Raised when authentication fails."""
    pass


class PermissionDeniedError(StorefrontError):
    """Raised when an authenticated user may not perform an action."""
    pass


class ValidationError(StorefrontError):
    """Raised when input or state validation fails."""

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Optional[Any] = None, expected_type: Optional[str] = None):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field name that failed validation
            value: Invalid value
            expected_type: Expected data type
        """
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(message, details)
        self.field = field
        self.value = value
        self.expected_type = expected_type


class NotFoundError(StorefrontError):
    """Raised when a referenced record does not exist."""

    def __init__(self, message: str, resource: Optional[str] = None,
                 resource_id: Optional[Any] = None):
        details = {}
        if resource:
            details["resource"] = resource
        if resource_id is not None:
            details["resource_id"] = str(resource_id)

        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(StorefrontError):
    """Raised when an operation would duplicate an existing record."""
    pass


class APIError(StorefrontError):
    """Base class for upstream API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_data: Optional[Any] = None):
        """
        Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: API response data
        """
        details = {}
        if status_code:
            details["status_code"] = status_code
        if response_data:
            details["response_data"] = response_data

        super().__init__(message, details)
        self.status_code = status_code
        self.response_data = response_data


class MarketplaceAPIError(APIError):
    """Raised when a marketplace provider call fails."""

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 status_code: Optional[int] = None,
                 response_data: Optional[Any] = None):
        super().__init__(message, status_code, response_data)
        self.endpoint = endpoint

        if endpoint:
            self.details["endpoint"] = endpoint


class SellbriteAPIError(MarketplaceAPIError):
    """Raised when Sellbrite API calls fail."""
    pass


class RateLimitError(APIError):
    """Raised when API rate limits are exceeded."""

    def __init__(self, message: str, retry_after: Optional[int] = None,
                 endpoint: Optional[str] = None):
        """
        Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retry
            endpoint: API endpoint that was rate limited
        """
        details = {}
        if retry_after:
            details["retry_after"] = retry_after
        if endpoint:
            details["endpoint"] = endpoint

        super().__init__(message, 429, details)
        self.retry_after = retry_after
        self.endpoint = endpoint


class DataSyncError(StorefrontError):
    """Raised when a marketplace synchronization fails as a whole."""

    def __init__(self, message: str, sync_run_id: Optional[str] = None,
                 channel_id: Optional[str] = None):
        details = {}
        if sync_run_id:
            details["sync_run_id"] = sync_run_id
        if channel_id:
            details["channel_id"] = channel_id

        super().__init__(message, details)
        self.sync_run_id = sync_run_id
        self.channel_id = channel_id


class SchedulingError(StorefrontError):
    """Raised when scheduled jobs cannot be registered or started."""
    pass


class DatabaseError(StorefrontError):
    """Raised when database operations fail."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 table: Optional[str] = None):
        """
        Initialize database error.

        Args:
            message: Error message
            operation: Database operation that failed
            table: Table involved in operation
        """
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table

        super().__init__(message, details=details)
        self.operation = operation
        self.table = table


def handle_api_error(response, endpoint: Optional[str] = None,
                     error_class: type = MarketplaceAPIError,
                     provider: str = "Marketplace") -> None:
    """
    Handle HTTP response and raise appropriate API error.

    Upstream authentication failures are reported as API errors rather than
    AuthenticationError so they are never confused with the caller's own
    credentials.

    Args:
        response: HTTP response object
        endpoint: API endpoint that was called
        error_class: MarketplaceAPIError subclass raised for failures
        provider: Provider label used in the message

    Raises:
        RateLimitError for 429, ``error_class`` otherwise.
    """
    status_code = getattr(response, 'status_code', None)
    text = getattr(response, 'text', '') or ''

    try:
        response_data = response.json()
    except ValueError:
        response_data = text or None

    if status_code == 429:
        retry_after = response.headers.get('Retry-After') if hasattr(response, 'headers') else None
        raise RateLimitError(
            f"{provider} API rate limit exceeded",
            retry_after=int(retry_after) if retry_after and str(retry_after).isdigit() else None,
            endpoint=endpoint
        )

    if status_code in (401, 403):
        message = f"{provider} API rejected credentials ({status_code})"
    elif status_code is not None and status_code >= 500:
        message = f"{provider} API server error ({status_code}): {text}"
    else:
        message = f"{provider} API error ({status_code}): {text}"

    raise error_class(
        message,
        endpoint=endpoint,
        status_code=status_code,
        response_data=response_data
    )
