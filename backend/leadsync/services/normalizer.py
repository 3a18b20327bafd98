"""Coercion of loosely-typed provider fields into canonical values.

Every function here is total: bad input comes back as ``None`` or as a fixed
placeholder, never as an exception.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional
import re

from dateutil import parser as date_parser

from ..schemas.pydantic_schemas import Address


PHONE_PLACEHOLDER = "(555) 555-5555"

UNKNOWN_ADDRESS = Address(
    address_line_one="Address not provided",
    city="Unknown City",
    state="Unknown State",
    country="US",
    zip_code="00000",
)


class DateRole(str, Enum):
    DATE = "date"
    TIME = "time"
    TIMESTAMP = "timestamp"


# Columns that are normalized on the way into call_logs, and how
DATE_FIELD_ROLES: Dict[str, DateRole] = {
    "start_timestamp": DateRole.TIMESTAMP,
    "end_timestamp": DateRole.TIMESTAMP,
    "appointment_date": DateRole.DATE,
    "appointment_time": DateRole.TIME,
    "appointment_start": DateRole.TIME,
    "appointment_end": DateRole.TIME,
    "created_at": DateRole.TIMESTAMP,
    "updated_at": DateRole.TIMESTAMP,
}

_PLACEHOLDERS = {"", "null", "undefined", "unknown", "not specified"}
_VAGUE_MARKERS = ("morning", "afternoon", "evening", "next week", "to be confirmed")
_EPOCH_RE = re.compile(r"^\d{10,}$")
_TIME_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# dateutil fills missing date parts from ``default``; parsing against two
# defaults that differ in year, month and day exposes text that lacks any of them
_PARSE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))

# US ZIP (12345 or 12345-6789) or Canadian postal code (A1A 1A1, A1A1A1, A1A)
_POSTAL = r"\d{5}(?:-\d{4})?|[A-Z]\d[A-Z]\s?\d[A-Z]\d|[A-Z]\d[A-Z]"
_POSTAL_RE = re.compile(rf"\b(?:{_POSTAL})\b", re.IGNORECASE)
_STATE_POSTAL_RE = re.compile(rf"\b([A-Z]{{2}})\s+(?:{_POSTAL})\b", re.IGNORECASE)
_ADDRESS_PLACEHOLDERS = {"", "null", "not mentioned"}


def utc_now_iso() -> str:
    return to_iso_z(datetime.now(timezone.utc))


def to_iso_z(moment: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_placeholder_date(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in _PLACEHOLDERS:
        return True
    return any(marker in lowered for marker in _VAGUE_MARKERS)


def _from_epoch_ms(value: float, role: DateRole) -> Optional[str]:
    try:
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    if role is DateRole.DATE:
        return moment.strftime("%Y-%m-%d")
    if role is DateRole.TIME:
        return moment.strftime("%H:%M:%S")
    return to_iso_z(moment)


def _parse_full_date(text: str) -> Optional[datetime]:
    """Parse ``text`` only if it names a year, a month and a day.

    "Friday", "June", "15" or "Dec 3" return None instead of a date guessed
    from today.
    """
    try:
        first, second = (date_parser.parse(text, default=default) for default in _PARSE_DEFAULTS)
    except (ValueError, OverflowError):
        return None
    if first.date() != second.date():
        return None
    return first


def normalize_date(value: Any, role: DateRole) -> Optional[str]:
    """Normalize a date, time-of-day or timestamp value.

    Numbers and digit strings of 10+ characters are epoch milliseconds. Date
    strings are parsed as calendar dates and must carry a full year, month and
    day; time strings must already look like
    ``H:MM[:SS]``. Placeholders such as "unknown" or "next week" become None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value, role)
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return _from_epoch_ms(moment.timestamp() * 1000, role)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if is_placeholder_date(text):
        return None
    if _EPOCH_RE.match(text):
        return _from_epoch_ms(int(text), role)

    if role is DateRole.TIME:
        return text if _TIME_RE.match(text) else None

    parsed = _parse_full_date(text)
    if parsed is None:
        return None
    if role is DateRole.DATE:
        return parsed.strftime("%Y-%m-%d")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return to_iso_z(parsed)


def normalize_date_fields(row: Mapping[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    out = dict(row)
    for field in fields:
        if out.get(field) is not None:
            out[field] = normalize_date(out[field], DATE_FIELD_ROLES.get(field, DateRole.TIMESTAMP))
    return out


def filter_fields(row: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    return {key: row[key] for key in allowed if key in row}


def format_phone(value: Any) -> str:
    if not value or not isinstance(value, str):
        return PHONE_PLACEHOLDER
    digits = re.sub(r"\D", "", value)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[0:3]}) {digits[3:6]}-{digits[6:10]}"
    return PHONE_PLACEHOLDER


def clean_email(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    cleaned = re.sub(r"\s+", "", value)
    return cleaned if _EMAIL_RE.match(cleaned) else None


def is_missing_address(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return True
    return value.strip().lower() in _ADDRESS_PLACEHOLDERS


def parse_address(value: Any) -> Address:
    """Split a free-text address into line/city/state/country/zip.

    The postal code may sit in any comma part; the state is the two letters
    right before it and the city is the part before that. Anything that can't
    be resolved keeps the "unknown" default.
    """
    if is_missing_address(value):
        return UNKNOWN_ADDRESS.model_copy()

    parts = [part.strip() for part in value.split(",")]

    zip_code = UNKNOWN_ADDRESS.zip_code
    state = UNKNOWN_ADDRESS.state
    zip_index = -1
    for index, part in enumerate(parts):
        match = _POSTAL_RE.search(part)
        if match:
            zip_code = match.group(0)
            zip_index = index
            state_match = _STATE_POSTAL_RE.search(part)
            if state_match:
                state = state_match.group(1).upper()
            break

    address_line_one = parts[0] or UNKNOWN_ADDRESS.address_line_one
    city = UNKNOWN_ADDRESS.city
    if zip_index > 0:
        city = parts[zip_index - 1] or UNKNOWN_ADDRESS.city
    elif len(parts) > 1:
        city = parts[1] or UNKNOWN_ADDRESS.city

    country = "US"
    last = parts[-1].upper()
    if last in ("CANADA", "CA", "CAN"):
        country = "Canada"

    return Address(
        address_line_one=address_line_one,
        city=city,
        state=state,
        country=country,
        zip_code=zip_code,
    )
