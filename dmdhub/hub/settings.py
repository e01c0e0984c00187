"""Pricing rules, limits and environment driven settings for the hub."""

from __future__ import annotations

import os

# Hub bookings
STUDENT_DISCOUNT = 0.08
EXTENSION_HOURLY_RATE = 49

# Exclusive space
EXCLUSIVE_HOURLY_RATE = 999
EXCLUSIVE_MORNING_DISCOUNT = 0.18
EXCLUSIVE_MORNING_CUTOFF_HOUR = 12

# Flexi memberships
FLEXI_GRIND = "DMD Flexi Grind"
MONTHLY_FOCUS = "Monthly Focus"
FLEXI_PLANS = {
    FLEXI_GRIND: {"valid_days": 30, "total_hours": 60, "price": 2609, "session_cap": None},
    MONTHLY_FOCUS: {"valid_days": 40, "total_hours": None, "price": 5099, "session_cap": 5},
}

# Loyalty ranking only counts visits of at least this many hours
LOYALTY_MIN_HOURS = 3

PAGE_SIZE = 10
TOP_PANTRY_ITEMS = 5
CURRENCY_SYMBOL = "₱"

DATABASE_PATH = os.getenv("DMD_DATABASE", "dmd_hub.db")
SECRET_KEY = os.getenv("DMD_SECRET_KEY", "dmd-hub-secret")
SESSION_HOURS = int(os.getenv("DMD_SESSION_HOURS", "12"))
BUSINESS_TIMEZONE = os.getenv("DMD_TIMEZONE", "Asia/Manila")
LOG_LEVEL = os.getenv("DMD_LOG_LEVEL", "INFO")
