"""
Utility functions shared across the app:
- Money helpers (Decimal, half-up rounding to cents).
- Tolerant parsers for JSON/form/spreadsheet input.
- Naive UTC clock used for every stored timestamp.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
# largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def utcnow() -> datetime:
    """Naive UTC now (the database stores naive UTC datetimes)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_decimal(value) -> Decimal:
    """Convert Numeric/float/str/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(x) -> Decimal:
    return to_decimal(x).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value) -> Decimal | None:
    """
    Parse a decimal from user or spreadsheet input.

    Accepts numbers, "1,234.50", "$12.00". Returns None for empty/invalid input,
    NaN, infinities and values beyond MAX_AMOUNT included.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        result = to_decimal(value)
    else:
        raw = str(value).strip().replace("$", "").replace(",", "")
        if raw == "":
            return None
        try:
            result = Decimal(raw)
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite() or abs(result) > MAX_AMOUNT:
        return None
    return result


def parse_optional_int(value) -> int | None:
    """Parse optional int from JSON/query input."""
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%d.%m.%Y", "%Y-%m-%d %H:%M:%S")


def parse_datetime(value) -> datetime | None:
    """Parse a date/datetime cell or string. Returns None when it can't be parsed."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def short_ref(po_id) -> str:
    """Human reference for a PO id, e.g. PO #000042."""
    return f"PO #{str(po_id).zfill(6)[-6:].upper()}"


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
