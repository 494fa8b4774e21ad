"""Timestamp normalization and relative date parsing."""

import re
from datetime import datetime, timedelta, timezone

_RELATIVE_PATTERN = re.compile(r'^(\d+)([hdwm])$')

# Epoch values above this are taken to be milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse an agent-provided timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with ``Z``, an offset, or naive, which is
    read as UTC) and epoch seconds or milliseconds as numbers or numeric
    strings. Returns None for anything unrecognized.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch_number(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if re.fullmatch(r'\d+(\.\d+)?', text):
        return _from_epoch_number(float(text))

    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None


def _from_epoch_number(value: float) -> datetime | None:
    if value > _EPOCH_MS_THRESHOLD:
        value = value / 1000
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_duration(value: str) -> timedelta | None:
    """Parse a relative window like ``30m``, ``24h``, ``7d``, ``2w``.

    ``m`` means months of 30 days, matching how windows are written on
    the command line (``--last 1m``).
    """
    match = _RELATIVE_PATTERN.match(value.strip().lower())
    if not match:
        return None

    amount = int(match.group(1))
    unit = match.group(2)
    if unit == 'h':
        return timedelta(hours=amount)
    elif unit == 'd':
        return timedelta(days=amount)
    elif unit == 'w':
        return timedelta(weeks=amount)
    return timedelta(days=amount * 30)


def parse_date_value(value: str, now: datetime | None = None) -> datetime | None:
    """Parse a date value (ISO date or relative like '7d', '1h')."""
    if not value:
        return None

    delta = parse_duration(value)
    if delta is not None:
        return (now or utc_now()) - delta

    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed

    for fmt in ['%Y-%m-%d', '%Y/%m/%d']:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def to_epoch(dt: datetime | None) -> int | None:
    if dt is None:
        return None
    return int(ensure_utc(dt).timestamp())


def from_epoch(ts: int | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
