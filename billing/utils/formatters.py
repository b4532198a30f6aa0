"""
Formatting helpers for JSON responses.

Money goes out as a string with two decimals so clients never see float
rounding; dates and datetimes as ISO 8601.
"""
import enum
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Any, Optional, Union


def money(value: Union[int, float, Decimal, str, None]) -> Optional[str]:
    """
    Format an amount with exactly two decimals.

    Examples:
        money(Decimal('1500')) -> "1500.00"
        money(19.9) -> "19.90"
        money(None) -> None
    """
    if value is None or value == "":
        return None
    try:
        return str(Decimal(str(value)).quantize(Decimal('0.01')))
    except (InvalidOperation, ValueError, TypeError):
        return str(value)


def iso_date(value: Union[date, datetime, None]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def to_json(value: Any) -> Any:
    """Recursively convert service results (Decimal, date, Enum) to JSON-safe values."""
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    if isinstance(value, Decimal):
        return money(value)
    if isinstance(value, (date, datetime)):
        return iso_date(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value
