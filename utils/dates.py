import math
from datetime import date, datetime, timedelta

from services.errors import ValidationError


def parse_date(value, field: str) -> date:
    """Accept a ``date``, ``YYYY-MM-DD`` or an ISO datetime string (its date part is used)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    raw = value.strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD")


def rental_days(start, end) -> int:
    # ceil of the difference in whole days
    return math.ceil((end - start) / timedelta(days=1))


def utc_today() -> date:
    return datetime.utcnow().date()
