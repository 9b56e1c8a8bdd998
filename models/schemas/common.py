from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional

from marshmallow import ValidationError

CENT = Decimal("0.01")


def parse_symbols(raw) -> Optional[List[str]]:
    """
    Accept "USD,GBP", ["USD", "GBP"] or ["USD,GBP"] and return a flat list.
    Returns None when nothing was supplied.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = [raw]
    symbols: List[str] = []
    for chunk in raw:
        if chunk is None:
            continue
        symbols.extend(part.strip() for part in str(chunk).split(","))
    return symbols or None


def validate_currency_code(value: Optional[str], field_name: str, message: str) -> None:
    if value is not None and not value.strip():
        raise ValidationError(message, field_name=field_name)


def validate_symbols(symbols: Optional[Iterable[str]]) -> None:
    if symbols is None:
        return
    if any(s is None or not str(s).strip() for s in symbols):
        raise ValidationError(
            "Symbols cannot contain empty or whitespace values.", field_name="symbols"
        )


def validate_not_future(d: date, today: Optional[date] = None) -> None:
    today = today or datetime.now(timezone.utc).date()
    if d and d > today:
        raise ValidationError("Start date cannot be in the future.", field_name="start_date")


def to_positive_decimal(value) -> Decimal:
    if value is None:
        raise ValidationError("Amount is required.", field_name="amount")
    try:
        d = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValidationError("Invalid decimal.", field_name="amount")
    if not d.is_finite() or d <= 0:
        raise ValidationError("Amount cannot be zero or negative.", field_name="amount")
    return d


def round_currency(value: Decimal) -> Decimal:
    """Round to cents, ties away from zero (never banker's rounding)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
