"""
Module: docflow_kernel.db.types
Responsibility: Annotated type aliases and helpers for monetary and timestamp
    values.  Centralizes precision and rounding so every model and service
    uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  Monetary amounts are Decimal quantized with
      round_money(), the only sanctioned rounding function.
    - Timestamps leaving the database are UTC-aware (ensure_utc); backends
      without timezone support hand back naive values.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 14 digits total, 2 decimal places
Money = Annotated[Decimal, Numeric(14, 2)]

# Free text (descriptions, justifications, reasons)
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "0"
    return Decimal(value).quantize(Decimal(quantize_str), rounding=rounding)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps and normalize aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
