"""Loyalty leaderboard and revenue report aggregation."""

from __future__ import annotations

import csv
import io
import re
from collections import defaultdict
from typing import Any, Iterable, Sequence

from . import settings
from .formatting import day_key, parse_timestamp

ITEM_PATTERN = re.compile(r"^(\d+)x\s(.+)$")
BADGES = {1: "gold", 2: "silver", 3: "bronze"}
CUSTOMER_TYPES = ("Student", "Examinee", "Regular", "Exclusive", "Flexi Member")
CSV_COLUMNS = (
    "Date",
    "Check-ins",
    "Packages",
    "Exclusive Income",
    "Flexi Income",
    "Pantry Income",
    "Total Income",
)


# ----------------------------------------------------------------------
# Loyalty leaderboard
# ----------------------------------------------------------------------
def normalize_name(full_name: str | None) -> str:
    """Grouping key for a customer name.

    Periods are dropped, case and spacing are folded, and names longer than
    two words collapse to their first and last word so that middle names and
    initials do not split one customer into several rows.
    """

    if not full_name or not full_name.strip():
        return "unknown"
    parts = full_name.replace(".", "").lower().split()
    if len(parts) <= 2:
        return " ".join(parts)
    return f"{parts[0]} {parts[-1]}"


def _sort_instant(value: Any):
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None


def build_leaderboard(records: Iterable[dict]) -> list[dict]:
    """Aggregate ``{name, date, hours}`` visit records into ranked entries."""

    stats: dict[str, dict] = {}
    for record in records:
        raw_name = record["name"]
        key = normalize_name(raw_name)
        entry = stats.get(key)
        if entry is None:
            entry = stats[key] = {
                "key": key,
                "name": raw_name,
                "visit_count": 0,
                "total_hours": 0.0,
                "last_visit": record["date"],
            }
        entry["visit_count"] += 1
        entry["total_hours"] += float(record["hours"] or 0)
        latest = _sort_instant(entry["last_visit"])
        candidate = _sort_instant(record["date"])
        if candidate is not None and (latest is None or candidate > latest):
            entry["last_visit"] = record["date"]
            entry["name"] = raw_name

    ranked = sorted(
        stats.values(), key=lambda item: (-item["visit_count"], -item["total_hours"])
    )
    for position, entry in enumerate(ranked, start=1):
        entry["total_hours"] = round(entry["total_hours"], 2)
        entry["rank"] = position
        entry["badge"] = BADGES.get(position)
    return ranked


def filter_leaderboard(entries: Sequence[dict], term: str | None) -> list[dict]:
    """Case-insensitive name search. Entries keep their overall rank."""

    if not term:
        return list(entries)
    needle = term.strip().lower()
    return [entry for entry in entries if needle in (entry["name"] or "").lower()]


# ----------------------------------------------------------------------
# Revenue report
# ----------------------------------------------------------------------
def parse_items_summary(summary: str | None) -> dict[str, int]:
    """Turn ``"2x Oreo, 1x Coke"`` into ``{"Oreo": 2, "Coke": 1}``."""

    counts: dict[str, int] = defaultdict(int)
    if not summary:
        return {}
    for part in summary.split(","):
        match = ITEM_PATTERN.match(part.strip())
        if match:
            counts[match.group(2)] += int(match.group(1))
    return dict(counts)


def _amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def build_report(
    *,
    start_date: str,
    end_date: str,
    timesheet: Iterable[dict],
    exclusive: Iterable[dict],
    flexi_sales: Iterable[dict],
    flexi_logs: Iterable[dict],
    pantry: Iterable[dict],
) -> dict:
    """Merge the five income/traffic streams into day buckets and totals.

    Flexi check-in logs only count as traffic; the membership's revenue is
    recognised once, on the day it was sold.
    """

    days: dict[str, dict] = {}

    def bucket(day: str) -> dict:
        if day not in days:
            days[day] = {"timesheet": 0.0, "exclusive": 0.0, "flexi": 0.0, "pantry": 0.0, "check_ins": 0}
        return days[day]

    totals = {"timesheet": 0.0, "exclusive": 0.0, "flexi": 0.0, "pantry": 0.0}
    check_ins = 0
    bookings_count = 0
    package_counts: dict[str, int] = defaultdict(int)
    customer_types = dict.fromkeys(CUSTOMER_TYPES, 0)
    item_counts: dict[str, int] = defaultdict(int)

    for row in timesheet:
        day = bucket(day_key(row["check_in_time"]))
        amount = _amount(row.get("amount_paid"))
        day["timesheet"] += amount
        day["check_ins"] += 1
        totals["timesheet"] += amount
        check_ins += 1
        bookings_count += 1
        package_counts[row.get("package_name") or "Unknown"] += 1
        if row.get("is_student"):
            customer_types["Student"] += 1
        elif row.get("is_board_examinee"):
            customer_types["Examinee"] += 1
        else:
            customer_types["Regular"] += 1

    for row in exclusive:
        day = bucket(day_key(row["booking_date"]))
        amount = _amount(row.get("amount_paid"))
        people = row.get("pax") or 1
        day["exclusive"] += amount
        day["check_ins"] += people
        totals["exclusive"] += amount
        check_ins += people
        customer_types["Exclusive"] += people

    for row in flexi_sales:
        day = bucket(day_key(row["created_at"]))
        amount = _amount(row.get("amount_paid"))
        day["flexi"] += amount
        totals["flexi"] += amount
        customer_types["Flexi Member"] += 1

    for row in flexi_logs:
        bucket(day_key(row["check_in_time"]))["check_ins"] += 1
        check_ins += 1

    for row in pantry:
        amount = _amount(row.get("total_amount"))
        bucket(day_key(row["created_at"]))["pantry"] += amount
        totals["pantry"] += amount
        for name, quantity in parse_items_summary(row.get("items_summary")).items():
            item_counts[name] += quantity

    series = []
    for day in sorted(days):
        values = days[day]
        series.append(
            {
                "date": day,
                **values,
                "total": values["timesheet"] + values["exclusive"] + values["flexi"] + values["pantry"],
            }
        )

    packages = sorted(
        ({"name": name, "bookings": count} for name, count in package_counts.items()),
        key=lambda item: -item["bookings"],
    )
    top_items = sorted(
        ({"name": name, "count": count} for name, count in item_counts.items()),
        key=lambda item: -item["count"],
    )[: settings.TOP_PANTRY_ITEMS]

    return {
        "start_date": start_date,
        "end_date": end_date,
        "days": series,
        "totals": {**totals, "grand_total": sum(totals.values())},
        "check_ins": check_ins,
        "bookings_count": bookings_count,
        "customer_types": customer_types,
        "packages": packages,
        "top_pantry_items": top_items,
    }


def report_csv(report: dict) -> str:
    """Render the day series of a report as CSV text."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for day in report["days"]:
        writer.writerow(
            [
                day["date"],
                day["check_ins"],
                _plain(day["timesheet"]),
                _plain(day["exclusive"]),
                _plain(day["flexi"]),
                _plain(day["pantry"]),
                _plain(day["total"]),
            ]
        )
    return buffer.getvalue()


def _plain(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"
