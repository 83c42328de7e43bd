"""
Value parsers shared by the channel normalizers.

None of these raise on bad input. Amounts that feed arithmetic fall back to
0.0 (parse_amount); informational amounts fall back to None
(parse_optional_amount). Dates that match no known format become None.
"""

import math
import numbers
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

# Spreadsheet serials count days from 1899-12-30 (1900 date system)
_SERIAL_EPOCH = datetime(1899, 12, 30)
# Serials below 61 predate the phantom 1900-02-29 and sit one day later
_SERIAL_LEAP_BUG_CUTOFF = 61

_TIMESTAMP_FORMATS = (
    "%d %b %Y, %I:%M %p",
    "%d %b %Y %I:%M %p",
    "%d %b %Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%d-%m-%Y",
)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    # NaN and pandas NaT are the only values unequal to themselves
    try:
        return bool(value != value)
    except (TypeError, ValueError):
        return False


def _to_float(value: Any) -> Optional[float]:
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        number = float(value)
    else:
        cleaned = _NON_NUMERIC.sub("", str(value))
        try:
            number = float(cleaned)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def parse_amount(value: Any) -> float:
    """
    Parse a currency-like value for use in arithmetic.

    Everything except digits, '.' and '-' is stripped first, so "₹1,234.50"
    parses to 1234.5. Unparseable input yields 0.0.
    """
    number = _to_float(value)
    return 0.0 if number is None else number


def parse_optional_amount(value: Any) -> Optional[float]:
    """Same as parse_amount, but unparseable input yields None."""
    return _to_float(value)


def parse_integer(value: Any) -> Optional[int]:
    """Parse and round half up to an int; None when unparseable."""
    number = _to_float(value)
    if number is None:
        return None
    return int(math.floor(number + 0.5))


def parse_leading_number(value: Any) -> Optional[float]:
    """
    Read the number a cell starts with, e.g. "18.5 (5%)" -> 18.5.

    Args:
        value: Raw cell value

    Returns:
        The leading number, or None if the value does not start with one
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        return float(value) if math.isfinite(value) else None
    match = _LEADING_NUMBER.match(str(value).strip())
    if not match:
        return None
    return float(match.group(0))


def round2(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(value, 2)


def _serial_to_date(serial: float) -> Optional[date]:
    if not math.isfinite(serial) or serial < 1:
        return None
    epoch = _SERIAL_EPOCH
    if serial < _SERIAL_LEAP_BUG_CUTOFF:
        epoch += timedelta(days=1)
    try:
        return (epoch + timedelta(days=int(serial))).date()
    except OverflowError:
        return None


def _parse_datetime_string(text: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value: Any) -> Optional[str]:
    """
    Normalize a calendar date to "YYYY-MM-DD".

    Accepts date/datetime objects, spreadsheet serial numbers, "day/month/year"
    strings and ISO-8601 timestamps (converted to UTC before the date is taken).

    Returns:
        The ISO date string, or None when no format matches
    """
    if _is_blank(value) or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = _as_utc(value)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, numbers.Real):
        parsed = _serial_to_date(float(value))
        return parsed.isoformat() if parsed else None

    text = str(value).strip()
    match = _DAY_MONTH_YEAR.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            return None

    parsed_dt = _parse_datetime_string(text)
    if parsed_dt is None:
        return None
    if parsed_dt.tzinfo is not None:
        parsed_dt = _as_utc(parsed_dt)
    return parsed_dt.date().isoformat()


def parse_timestamp(value: Any) -> Optional[str]:
    """
    Normalize a point in time to an ISO-8601 UTC string.

    Returns:
        e.g. "2026-01-31T10:15:00+00:00", or None when unparseable
    """
    if _is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value).isoformat()
    if isinstance(value, date):
        return _as_utc(datetime(value.year, value.month, value.day)).isoformat()

    parsed = _parse_datetime_string(str(value).strip())
    if parsed is None:
        return None
    return _as_utc(parsed).isoformat()


def clean_text(value: Any) -> Optional[str]:
    """Strip a text field; blanks become None."""
    if _is_blank(value):
        return None
    text = str(value).strip()
    return text or None
