"""
Datetime parsing helpers.

All timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from storefront.utils.exceptions import ValidationError


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime, None], field: str = "date") -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime.

    Raises:
        ValidationError: If the value is not a valid date
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}", field=field, value=value, expected_type="ISO-8601 date")


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO string with a trailing Z for naive UTC datetimes."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
