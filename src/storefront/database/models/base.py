"""
Declarative base and shared column helpers.
"""

import uuid
from datetime import datetime

from sqlalchemy.orm import declarative_base


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp used for every DateTime column."""
    return datetime.utcnow()


def generate_id(prefix: str) -> str:
    """Prefixed random identifier, e.g. ``aff_3f9c...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def in_check(column: str, values) -> str:
    """SQL text for a CHECK constraint restricting a column to fixed values."""
    quoted = ", ".join(f"'{v.value if hasattr(v, 'value') else v}'" for v in values)
    return f"{column} IN ({quoted})"
