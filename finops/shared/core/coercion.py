"""
Lenient scalar coercion for query rows.

Billing exports occasionally return NULLs, numeric strings or garbage in
numeric columns; a single bad cell must degrade to a default, never reject
the batch.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
import structlog

logger = structlog.get_logger()


def to_decimal(value: Any, default: Decimal = Decimal("0"), clamp_negative: bool = False) -> Decimal:
    if value is None or value == "":
        return default
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("row_value_coerced", value=str(value)[:64], target="decimal")
        return default
    if not result.is_finite():
        return default
    if clamp_negative and result < 0:
        return Decimal("0")
    return result


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("row_value_coerced", value=str(value)[:64], target="int")
        return default


def to_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning("row_value_coerced", value=str(value)[:64], target="date")
        return None
