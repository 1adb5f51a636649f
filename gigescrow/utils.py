"""Small shared helpers: ids, timestamps and amount parsing."""

import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# 1 ADA = 1,000,000 lovelace
LOVELACE_PER_ADA = Decimal(1_000_000)


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a time-based opaque id: ``<epoch millis>-<9 base36 chars>``.

    Matches the id format of the legacy data file so imported records and
    new records share one shape.
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass through a datetime), always tz-aware.

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO string (None passes through)."""
    if value is None:
        return None
    return value.isoformat()


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number or string into a Decimal."""
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed value
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def ada_to_lovelace(amount: Decimal) -> int:
    """Convert an ADA amount into integer lovelace (truncating dust)."""
    return int(to_decimal(amount) * LOVELACE_PER_ADA)
