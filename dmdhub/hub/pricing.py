"""Price, duration and validity rules for hub bookings and memberships.

Everything here is a pure function of its arguments so that the booking
façade, the web layer and the tests all agree on the same numbers.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Any, Mapping

from . import settings


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a till does: halves go up, never to even."""

    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def round_peso(value: float) -> int:
    return int(round_half_up(value))


# ----------------------------------------------------------------------
# Rates
# ----------------------------------------------------------------------
def compute_rate(
    base_price: float,
    is_hourly: bool,
    input_hours: float,
    is_student: bool,
    is_examinee: bool,
) -> int:
    """Return the price of a hub booking.

    Hourly packages are billed per hour, fixed packages ignore
    ``input_hours``. Students and board examinees share a single 8% discount;
    holding both flags does not stack it.
    """

    rate = base_price * input_hours if is_hourly else base_price
    if is_student or is_examinee:
        rate = rate - rate * settings.STUDENT_DISCOUNT
    return round_peso(rate)


@dataclass(frozen=True)
class ExclusiveQuote:
    rate_per_hour: int
    discount_applied: bool
    total: int


def parse_clock(value: str) -> dt.time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a time."""

    try:
        return dt.time.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid time of day: {value!r}") from exc


def exclusive_rate(start_time: str | dt.time, duration_hours: float) -> ExclusiveQuote:
    """Quote a whole-space booking. Morning starts get 18% off the hourly rate."""

    start = parse_clock(start_time) if isinstance(start_time, str) else start_time
    rate = float(settings.EXCLUSIVE_HOURLY_RATE)
    is_morning = start.hour < settings.EXCLUSIVE_MORNING_CUTOFF_HOUR
    if is_morning:
        rate = rate - rate * settings.EXCLUSIVE_MORNING_DISCOUNT
    return ExclusiveQuote(
        rate_per_hour=round_peso(rate),
        discount_applied=is_morning,
        total=round_peso(rate * duration_hours),
    )


# ----------------------------------------------------------------------
# Durations and validity windows
# ----------------------------------------------------------------------
def effective_duration(package: Mapping[str, Any], input_hours: float) -> float:
    if package["is_hourly"]:
        return float(input_hours)
    return float(package["duration"] or 0)


def scheduled_check_out(
    check_in: dt.datetime, package: Mapping[str, Any], input_hours: float
) -> dt.datetime:
    return check_in + dt.timedelta(hours=effective_duration(package, input_hours))


def exclusive_end(
    booking_date: str | dt.date, start_time: str | dt.time, duration_hours: float
) -> tuple[dt.date, dt.time]:
    """Return the end date and wall-clock end time of an exclusive booking.

    A session running past midnight ends on the following calendar day.
    """

    day = dt.date.fromisoformat(booking_date) if isinstance(booking_date, str) else booking_date
    start = parse_clock(start_time) if isinstance(start_time, str) else start_time
    end = dt.datetime.combine(day, start) + dt.timedelta(hours=duration_hours)
    return end.date(), end.time()


@dataclass(frozen=True)
class FlexiTerms:
    package_type: str
    start_date: dt.date
    expiry_date: dt.date
    total_hours: float | None
    remaining_hours: float | None
    price: int
    session_cap: float | None


def flexi_terms(package_type: str, start_date: str | dt.date) -> FlexiTerms:
    """Resolve the validity window and starting balance of a membership."""

    plan = settings.FLEXI_PLANS.get(package_type)
    if plan is None:
        raise ValueError(f"Unknown Flexi package: {package_type}")
    start = dt.date.fromisoformat(start_date) if isinstance(start_date, str) else start_date
    return FlexiTerms(
        package_type=package_type,
        start_date=start,
        expiry_date=start + dt.timedelta(days=plan["valid_days"]),
        total_hours=plan["total_hours"],
        remaining_hours=plan["total_hours"],
        price=plan["price"],
        session_cap=plan["session_cap"],
    )


def is_hour_capped(package_type: str) -> bool:
    plan = settings.FLEXI_PLANS.get(package_type) or {}
    return plan.get("total_hours") is not None


@dataclass(frozen=True)
class Extension:
    check_out_time: dt.datetime
    duration_hours: float
    amount_paid: float
    additional_cost: float


def extension_terms(
    *,
    check_out_time: dt.datetime | None,
    duration_hours: float | None,
    amount_paid: float | None,
    hours: float,
    additional_cost: float | None = None,
    now: dt.datetime | None = None,
) -> Extension:
    """Extend an active booking by ``hours``.

    The extension is billed at its own rate (49/h unless overridden), not
    at the rate of the booking's original package.
    """

    if hours <= 0:
        raise ValueError("Extension must add a positive number of hours")
    if additional_cost is None:
        additional_cost = hours * settings.EXTENSION_HOURLY_RATE
    base = check_out_time or now or dt.datetime.now()
    return Extension(
        check_out_time=base + dt.timedelta(hours=hours),
        duration_hours=(duration_hours or 0) + hours,
        amount_paid=(amount_paid or 0) + additional_cost,
        additional_cost=additional_cost,
    )


def session_hours(check_in: dt.datetime, check_out: dt.datetime) -> float:
    """Whole elapsed minutes expressed in hours, rounded to two places."""

    minutes = max(int((check_out - check_in).total_seconds() // 60), 0)
    return round_half_up(minutes / 60, 2)
