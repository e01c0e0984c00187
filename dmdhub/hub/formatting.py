"""Presentation helpers for money, dates and times."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from zoneinfo import ZoneInfo

from . import settings

log = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> dt.datetime:
    """Parse a stored date or date-time into a naive store-local datetime.

    Values carrying a UTC offset are converted to the business timezone
    before the offset is dropped.
    """

    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, dt.date):
        parsed = dt.datetime.combine(value, dt.time())
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE)).replace(tzinfo=None)
    return parsed


def day_key(value: Any) -> str:
    """Calendar day (``YYYY-MM-DD``) a stored instant falls on."""

    try:
        return parse_timestamp(value).date().isoformat()
    except (TypeError, ValueError):
        log.warning("Unparseable timestamp %r, bucketing by its raw prefix", value)
        return str(value)[:10]


def format_peso(amount: Any) -> str:
    try:
        number = float(amount or 0)
    except (TypeError, ValueError):
        return str(amount)
    if number.is_integer():
        return f"{settings.CURRENCY_SYMBOL}{int(number):,}"
    return f"{settings.CURRENCY_SYMBOL}{number:,.2f}"


def format_date(value: Any) -> str:
    """``Mon dd, yyyy``; the raw value comes back when it cannot be parsed."""

    if not value:
        return ""
    try:
        return parse_timestamp(value).strftime("%b %d, %Y")
    except (TypeError, ValueError):
        return str(value)


def format_time(value: Any) -> str:
    """``h:mm AM``; accepts full timestamps or bare ``HH:MM`` strings."""

    if not value:
        return ""
    try:
        if isinstance(value, str) and "T" not in value and "-" not in value:
            moment = dt.time.fromisoformat(value.strip())
        else:
            moment = parse_timestamp(value).time()
    except (TypeError, ValueError):
        return str(value)
    hour = moment.hour % 12 or 12
    return f"{hour}:{moment.minute:02d} {'AM' if moment.hour < 12 else 'PM'}"
