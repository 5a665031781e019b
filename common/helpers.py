"""
Khairat Payments - Shared Helpers
==================================
Pure utility functions with NO database or module dependencies.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional


def now_utc() -> datetime:
    """Returns current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as ISO-8601 string (for JSON columns)."""
    return now_utc().isoformat()


def new_uuid() -> str:
    return str(uuid.uuid4())


def safe_decimal(value) -> Optional[Decimal]:
    """Safely convert a value to Decimal. Returns None on failure.

    Floats go through str() so 25.5 becomes Decimal("25.5"), not its binary expansion.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None


def safe_int(value) -> Optional[int]:
    """Safely convert a string to int. Returns None on failure."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def truncate_text(value: str, limit: int, ellipsis: str = "...") -> str:
    """Cut text to at most `limit` chars; cut text ends with the ellipsis and is exactly `limit` long."""
    value = value or ""
    if len(value) <= limit:
        return value
    return value[: limit - len(ellipsis)] + ellipsis


def format_ringgit(value) -> str:
    """Format a major-unit amount as 'RM 1,234.50'."""
    amount = safe_decimal(value)
    if amount is None:
        return "RM 0.00"
    return "RM {:,.2f}".format(amount)


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Mask a credential for logs: keep only the first few chars."""
    if not value:
        return ""
    return value[:visible] + "*" * max(0, len(value) - visible)
