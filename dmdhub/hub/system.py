"""Core orchestration logic for the DMD hub back office."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import math
import secrets
from dataclasses import dataclass
from typing import Any, Sequence

from . import pricing, settings
from .database import get_connection, initialize_database, transaction
from .formatting import parse_timestamp
from .reports import build_leaderboard, build_report, filter_leaderboard

log = logging.getLogger(__name__)

BOOKING_STATUSES = ("Active", "Completed")
EXCLUSIVE_STATUSES = ("Confirmed", "Completed")
CHECKED_IN = "Checked In"
INACTIVE = "Inactive"


class AuthorizationError(RuntimeError):
    """Raised when a user action is not permitted."""


class ValidationError(RuntimeError):
    """Raised when incoming data fails validation."""


class NotFoundError(ValidationError):
    """Raised when a referenced record does not exist."""


class ExpiredError(ValidationError):
    """Raised when a membership is used after its expiry date."""


class InsufficientBalanceError(ValidationError):
    """Raised when an hour-capped membership has no hours left."""


@dataclass(frozen=True)
class SessionContext:
    """A signed-in staff session. Created by ``sign_in``, ended by ``sign_out``."""

    token: str
    user_id: int
    email: str
    role: str
    expires_at: dt.datetime

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        return (now or dt.datetime.now()) >= self.expires_at


def _stamp(moment: dt.datetime) -> str:
    return moment.isoformat(timespec="seconds")


def _parse_instant(value: str | dt.datetime, field: str) -> dt.datetime:
    """Naive store-local datetime; offset-aware input is converted first."""

    if value is None:
        raise ValidationError(f"Invalid {field}: {value!r}")
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}: {value!r}") from exc


def _parse_day(value: str | dt.date, field: str) -> dt.date:
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}: {value!r}") from exc


def _guest_count(guest_list: str | None) -> int:
    return len([line for line in (guest_list or "").split("\n") if line.strip()])


class HubSystem:
    """High level façade that exposes application level behaviours."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self.conn = get_connection(db_path)
        initialize_database(self.conn)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _hash_password(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 390000)
        return f"pbkdf2_sha256${salt}${digest.hex()}"

    def _verify_password(self, stored: str, provided: str) -> bool:
        algorithm, salt, hex_digest = stored.split("$")
        candidate = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt.encode(), 390000)
        return secrets.compare_digest(candidate.hex(), hex_digest)

    def _now(self, now: dt.datetime | None = None) -> dt.datetime:
        if now is None:
            return dt.datetime.now().replace(microsecond=0)
        return parse_timestamp(now)

    def _paginate(
        self,
        *,
        select: str,
        where: str,
        params: Sequence[Any],
        order: str,
        page: int,
        count_from: str | None = None,
    ) -> dict:
        page = max(int(page or 0), 0)
        total = self.conn.execute(
            f"SELECT COUNT(*) AS total FROM {count_from or select.split(' FROM ', 1)[1]} {where}",
            params,
        ).fetchone()["total"]
        rows = self.conn.execute(
            f"{select} {where} ORDER BY {order} LIMIT ? OFFSET ?",
            [*params, settings.PAGE_SIZE, page * settings.PAGE_SIZE],
        ).fetchall()
        return {
            "items": rows,
            "total": total,
            "page": page,
            "pages": math.ceil(total / settings.PAGE_SIZE),
        }

    # ------------------------------------------------------------------
    # Staff accounts & sessions
    # ------------------------------------------------------------------
    def register_user(
        self,
        *,
        email: str,
        password: str,
        role: str = "staff",
        name: str | None = None,
    ) -> dict:
        if not email or not password:
            raise ValidationError("Email and password are required")
        cur = self.conn.execute(
            "INSERT INTO users(email, password_hash, role, name) VALUES (?, ?, ?, ?)",
            (email.strip().lower(), self._hash_password(password), role, name),
        )
        self.conn.commit()
        return self.get_user(cur.lastrowid)

    def get_user(self, user_id: int) -> dict:
        row = self.conn.execute(
            "SELECT id, email, role, name, is_active, created_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("User not found")
        return row

    def sign_in(self, *, email: str, password: str, now: dt.datetime | None = None) -> SessionContext:
        row = self.conn.execute(
            "SELECT * FROM users WHERE email = ? AND is_active = 1", ((email or "").lower(),)
        ).fetchone()
        if not row or not self._verify_password(row["password_hash"], password or ""):
            raise AuthorizationError("Invalid credentials")
        issued = self._now(now)
        context = SessionContext(
            token=secrets.token_hex(24),
            user_id=row["id"],
            email=row["email"],
            role=row["role"],
            expires_at=issued + dt.timedelta(hours=settings.SESSION_HOURS),
        )
        self.conn.execute(
            "INSERT INTO user_sessions(token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (context.token, context.user_id, _stamp(issued), _stamp(context.expires_at)),
        )
        self.conn.commit()
        log.info("User %s signed in", context.email)
        return context

    def resolve_session(self, token: str | None, now: dt.datetime | None = None) -> SessionContext:
        if not token:
            raise AuthorizationError("Sign in required")
        row = self.conn.execute(
            """
            SELECT user_sessions.*, users.email, users.role
            FROM user_sessions
            JOIN users ON users.id = user_sessions.user_id
            WHERE user_sessions.token = ? AND user_sessions.revoked = 0 AND users.is_active = 1
            """,
            (token,),
        ).fetchone()
        if not row:
            raise AuthorizationError("Session is not valid")
        context = SessionContext(
            token=row["token"],
            user_id=row["user_id"],
            email=row["email"],
            role=row["role"],
            expires_at=dt.datetime.fromisoformat(row["expires_at"]),
        )
        if context.is_expired(self._now(now)):
            raise AuthorizationError("Session has expired")
        return context

    def sign_out(self, token: str) -> None:
        self.conn.execute("UPDATE user_sessions SET revoked = 1 WHERE token = ?", (token,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------
    def create_package(
        self,
        *,
        name: str,
        price: float,
        duration: float = 0,
        is_hourly: bool = False,
    ) -> dict:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        if price < 0 or duration < 0:
            raise ValidationError("Price and duration cannot be negative")
        cur = self.conn.execute(
            "INSERT INTO packages(name, price, duration, is_hourly) VALUES (?, ?, ?, ?)",
            (name.strip(), price, duration, int(is_hourly)),
        )
        self.conn.commit()
        return self.get_package(cur.lastrowid)

    def get_package(self, package_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM packages WHERE id = ?", (package_id,)).fetchone()
        if not row:
            raise NotFoundError("Package not found")
        return row

    def list_packages(self) -> list[dict]:
        return self.conn.execute("SELECT * FROM packages ORDER BY price, name").fetchall()

    def update_package(
        self,
        package_id: int,
        *,
        name: str | None = None,
        price: float | None = None,
        duration: float | None = None,
        is_hourly: bool | None = None,
    ) -> dict:
        package = self.get_package(package_id)
        if name is not None and not name.strip():
            raise ValidationError("Name is required")
        self.conn.execute(
            "UPDATE packages SET name = ?, price = ?, duration = ?, is_hourly = ? WHERE id = ?",
            (
                name.strip() if name is not None else package["name"],
                price if price is not None else package["price"],
                duration if duration is not None else package["duration"],
                int(is_hourly) if is_hourly is not None else package["is_hourly"],
                package_id,
            ),
        )
        self.conn.commit()
        return self.get_package(package_id)

    def delete_package(self, package_id: int) -> None:
        self.get_package(package_id)
        self.conn.execute("DELETE FROM packages WHERE id = ?", (package_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Hub bookings
    # ------------------------------------------------------------------
    def check_in(
        self,
        *,
        customer_name: str,
        package_id: int,
        duration_hours: float = 1,
        seat_number: str | None = None,
        is_student: bool = False,
        is_board_examinee: bool = False,
        is_group: bool = False,
        is_loyalty: bool = False,
        rentals: str | None = None,
        notes: str | None = None,
        check_in_time: str | dt.datetime | None = None,
    ) -> dict:
        if not customer_name or not customer_name.strip():
            raise ValidationError("Customer name is required")
        package = self.get_package(package_id)
        if package["is_hourly"] and duration_hours <= 0:
            raise ValidationError("Hourly packages need a positive number of hours")

        start = (
            _parse_instant(check_in_time, "check-in time")
            if check_in_time
            else self._now()
        )
        end = pricing.scheduled_check_out(start, package, duration_hours)
        if is_loyalty:
            amount = 0
            notes = f"[Loyalty Award] {notes}" if notes else "[Loyalty Award]"
        else:
            amount = pricing.compute_rate(
                package["price"],
                bool(package["is_hourly"]),
                duration_hours,
                is_student,
                is_board_examinee,
            )
        cur = self.conn.execute(
            """
            INSERT INTO bookings(
                customer_name, seat_number, package_id, package_name, duration_hours,
                check_in_time, check_out_time, amount_paid, status, is_student,
                is_board_examinee, is_group, is_loyalty, rentals, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'Active', ?, ?, ?, ?, ?, ?)
            """,
            (
                customer_name.strip(),
                seat_number,
                package["id"],
                package["name"],
                pricing.effective_duration(package, duration_hours),
                _stamp(start),
                _stamp(end),
                amount,
                int(is_student),
                int(is_board_examinee),
                int(is_group),
                int(is_loyalty),
                rentals,
                notes,
            ),
        )
        self.conn.commit()
        log.info("Checked in %s on %s for %s", customer_name, package["name"], amount)
        return self.get_booking(cur.lastrowid)

    def get_booking(self, booking_id: int) -> dict:
        row = self.conn.execute(
            """
            SELECT bookings.*, COALESCE(packages.name, bookings.package_name) AS package_display
            FROM bookings
            LEFT JOIN packages ON packages.id = bookings.package_id
            WHERE bookings.id = ?
            """,
            (booking_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("Booking not found")
        return row

    def list_bookings(self, *, search: str | None = None, page: int = 0) -> dict:
        where = ""
        params: list[Any] = []
        if search:
            where = "WHERE bookings.customer_name LIKE ? OR bookings.seat_number LIKE ?"
            params.extend([f"%{search}%", f"%{search}%"])
        return self._paginate(
            select=(
                "SELECT bookings.*, COALESCE(packages.name, bookings.package_name) AS package_display "
                "FROM bookings LEFT JOIN packages ON packages.id = bookings.package_id"
            ),
            count_from="bookings",
            where=where,
            params=params,
            order="bookings.check_in_time DESC, bookings.id DESC",
            page=page,
        )

    def update_booking(
        self,
        booking_id: int,
        *,
        customer_name: str | None = None,
        seat_number: str | None = None,
        check_in_time: str | None = None,
        check_out_time: str | None = None,
        amount_paid: float | None = None,
        status: str | None = None,
        notes: str | None = None,
    ) -> dict:
        booking = self.get_booking(booking_id)
        merged = {
            "customer_name": customer_name.strip() if customer_name is not None else booking["customer_name"],
            "seat_number": seat_number if seat_number is not None else booking["seat_number"],
            "check_in_time": check_in_time or booking["check_in_time"],
            "check_out_time": check_out_time or booking["check_out_time"],
            "amount_paid": amount_paid if amount_paid is not None else booking["amount_paid"],
            "status": status or booking["status"],
            "notes": notes if notes is not None else booking["notes"],
        }
        if not merged["customer_name"]:
            raise ValidationError("Customer name is required")
        if merged["status"] not in BOOKING_STATUSES:
            raise ValidationError(f"Unknown booking status: {merged['status']}")
        start = _parse_instant(merged["check_in_time"], "check-in time")
        if merged["check_out_time"]:
            end = _parse_instant(merged["check_out_time"], "check-out time")
            if end < start:
                raise ValidationError("Check-out cannot be before check-in")
            merged["check_out_time"] = _stamp(end)
        elif merged["status"] == "Completed":
            raise ValidationError("Completed bookings need a check-out time")
        merged["check_in_time"] = _stamp(start)
        if merged["amount_paid"] < 0:
            raise ValidationError("Amount cannot be negative")

        self.conn.execute(
            """
            UPDATE bookings
            SET customer_name = ?, seat_number = ?, check_in_time = ?, check_out_time = ?,
                amount_paid = ?, status = ?, notes = ?
            WHERE id = ?
            """,
            (
                merged["customer_name"],
                merged["seat_number"],
                merged["check_in_time"],
                merged["check_out_time"],
                merged["amount_paid"],
                merged["status"],
                merged["notes"],
                booking_id,
            ),
        )
        self.conn.commit()
        return self.get_booking(booking_id)

    def extend_booking(
        self,
        booking_id: int,
        *,
        hours: float,
        additional_cost: float | None = None,
        now: dt.datetime | None = None,
    ) -> dict:
        booking = self.get_booking(booking_id)
        if booking["status"] != "Active":
            raise ValidationError("Only active bookings can be extended")
        if additional_cost is not None and additional_cost < 0:
            raise ValidationError("Extension cost cannot be negative")
        try:
            terms = pricing.extension_terms(
                check_out_time=(
                    _parse_instant(booking["check_out_time"], "check-out time")
                    if booking["check_out_time"]
                    else None
                ),
                duration_hours=booking["duration_hours"],
                amount_paid=booking["amount_paid"],
                hours=hours,
                additional_cost=additional_cost,
                now=self._now(now),
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        note = f"Extended by {hours:g} hrs (+{settings.CURRENCY_SYMBOL}{terms.additional_cost:g})"
        notes = f"{booking['notes']}\n{note}" if booking["notes"] else note
        self.conn.execute(
            """
            UPDATE bookings SET duration_hours = ?, check_out_time = ?, amount_paid = ?, notes = ?
            WHERE id = ?
            """,
            (terms.duration_hours, _stamp(terms.check_out_time), terms.amount_paid, notes, booking_id),
        )
        self.conn.commit()
        log.info("Extended booking %s by %s hours", booking_id, hours)
        return self.get_booking(booking_id)

    def check_out(self, booking_id: int, *, now: dt.datetime | None = None) -> dict:
        booking = self.get_booking(booking_id)
        if booking["status"] != "Active":
            raise ValidationError("Booking is already completed")
        start = _parse_instant(booking["check_in_time"], "check-in time")
        moment = max(self._now(now), start)
        self.conn.execute(
            "UPDATE bookings SET status = 'Completed', check_out_time = ? WHERE id = ?",
            (_stamp(moment), booking_id),
        )
        self.conn.commit()
        log.info("Checked out booking %s", booking_id)
        return self.get_booking(booking_id)

    def delete_booking(self, booking_id: int) -> None:
        self.get_booking(booking_id)
        self.conn.execute("DELETE FROM bookings WHERE id = ?", (booking_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Exclusive space
    # ------------------------------------------------------------------
    def _exclusive_values(
        self,
        *,
        client_name: str,
        booking_date: str,
        start_time: str,
        duration_hours: float,
        pax: int,
        guest_list: str | None,
    ) -> dict:
        if not client_name or not client_name.strip():
            raise ValidationError("Client name is required")
        if duration_hours <= 0:
            raise ValidationError("Duration must be positive")
        day = _parse_day(booking_date, "booking date")
        try:
            start = pricing.parse_clock(start_time)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        quote = pricing.exclusive_rate(start, duration_hours)
        end_date, end_time = pricing.exclusive_end(day, start, duration_hours)
        guests = _guest_count(guest_list)
        return {
            "client_name": client_name.strip(),
            "booking_date": day.isoformat(),
            "start_time": start.strftime("%H:%M"),
            "end_time": end_time.strftime("%H:%M"),
            "end_date": end_date.isoformat(),
            "duration_hours": duration_hours,
            "pax": guests if guests else max(int(pax or 1), 1),
            "guest_list": guest_list,
            "amount_paid": quote.total,
        }

    def create_exclusive_booking(
        self,
        *,
        client_name: str,
        booking_date: str,
        start_time: str = "09:00",
        duration_hours: float = 3,
        pax: int = 1,
        guest_list: str | None = None,
        notes: str | None = None,
    ) -> dict:
        values = self._exclusive_values(
            client_name=client_name,
            booking_date=booking_date,
            start_time=start_time,
            duration_hours=duration_hours,
            pax=pax,
            guest_list=guest_list,
        )
        cur = self.conn.execute(
            """
            INSERT INTO exclusive_bookings(
                client_name, booking_date, start_time, end_time, end_date, duration_hours,
                pax, guest_list, amount_paid, status, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'Confirmed', ?)
            """,
            (
                values["client_name"],
                values["booking_date"],
                values["start_time"],
                values["end_time"],
                values["end_date"],
                values["duration_hours"],
                values["pax"],
                values["guest_list"],
                values["amount_paid"],
                notes,
            ),
        )
        self.conn.commit()
        log.info("Exclusive booking for %s on %s", values["client_name"], values["booking_date"])
        return self.get_exclusive_booking(cur.lastrowid)

    def get_exclusive_booking(self, booking_id: int) -> dict:
        row = self.conn.execute(
            "SELECT * FROM exclusive_bookings WHERE id = ?", (booking_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("Exclusive booking not found")
        return row

    def update_exclusive_booking(
        self,
        booking_id: int,
        *,
        client_name: str | None = None,
        booking_date: str | None = None,
        start_time: str | None = None,
        duration_hours: float | None = None,
        pax: int | None = None,
        guest_list: str | None = None,
        notes: str | None = None,
    ) -> dict:
        booking = self.get_exclusive_booking(booking_id)
        values = self._exclusive_values(
            client_name=client_name if client_name is not None else booking["client_name"],
            booking_date=booking_date or booking["booking_date"],
            start_time=start_time or booking["start_time"],
            duration_hours=duration_hours if duration_hours is not None else booking["duration_hours"],
            pax=pax if pax is not None else booking["pax"],
            guest_list=guest_list if guest_list is not None else booking["guest_list"],
        )
        self.conn.execute(
            """
            UPDATE exclusive_bookings
            SET client_name = ?, booking_date = ?, start_time = ?, end_time = ?, end_date = ?,
                duration_hours = ?, pax = ?, guest_list = ?, amount_paid = ?, notes = ?
            WHERE id = ?
            """,
            (
                values["client_name"],
                values["booking_date"],
                values["start_time"],
                values["end_time"],
                values["end_date"],
                values["duration_hours"],
                values["pax"],
                values["guest_list"],
                values["amount_paid"],
                notes if notes is not None else booking["notes"],
                booking_id,
            ),
        )
        self.conn.commit()
        return self.get_exclusive_booking(booking_id)

    def complete_exclusive_booking(self, booking_id: int) -> dict:
        self.get_exclusive_booking(booking_id)
        self.conn.execute(
            "UPDATE exclusive_bookings SET status = 'Completed' WHERE id = ?", (booking_id,)
        )
        self.conn.commit()
        return self.get_exclusive_booking(booking_id)

    def delete_exclusive_booking(self, booking_id: int) -> None:
        self.get_exclusive_booking(booking_id)
        self.conn.execute("DELETE FROM exclusive_bookings WHERE id = ?", (booking_id,))
        self.conn.commit()

    def list_exclusive_bookings(self, *, search: str | None = None, page: int = 0) -> dict:
        where = ""
        params: list[Any] = []
        if search:
            where = "WHERE client_name LIKE ?"
            params.append(f"%{search}%")
        return self._paginate(
            select="SELECT * FROM exclusive_bookings",
            where=where,
            params=params,
            order="booking_date DESC, start_time DESC",
            page=page,
        )

    # ------------------------------------------------------------------
    # Flexi memberships
    # ------------------------------------------------------------------
    def register_flexi(
        self,
        *,
        client_name: str,
        package_type: str = settings.FLEXI_GRIND,
        start_date: str | None = None,
        amount_paid: float | None = None,
        notes: str | None = None,
        created_at: str | dt.datetime | None = None,
    ) -> dict:
        if not client_name or not client_name.strip():
            raise ValidationError("Client name is required")
        day = _parse_day(start_date, "start date") if start_date else dt.date.today()
        try:
            terms = pricing.flexi_terms(package_type, day)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        sold_at = _parse_instant(created_at, "sale time") if created_at else self._now()
        cur = self.conn.execute(
            """
            INSERT INTO flexi_accounts(
                client_name, package_type, start_date, expiry_date, total_hours_limit,
                remaining_hours, amount_paid, status, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 'Inactive', ?, ?)
            """,
            (
                client_name.strip(),
                package_type,
                terms.start_date.isoformat(),
                terms.expiry_date.isoformat(),
                terms.total_hours,
                terms.remaining_hours,
                amount_paid if amount_paid is not None else terms.price,
                notes,
                _stamp(sold_at),
            ),
        )
        self.conn.commit()
        log.info("Registered %s on %s until %s", client_name, package_type, terms.expiry_date)
        return self.get_flexi_account(cur.lastrowid)

    def get_flexi_account(self, account_id: int) -> dict:
        row = self.conn.execute(
            "SELECT * FROM flexi_accounts WHERE id = ?", (account_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("Flexi member not found")
        return row

    def list_flexi_accounts(self, *, search: str | None = None, page: int = 0) -> dict:
        where = ""
        params: list[Any] = []
        if search:
            where = "WHERE client_name LIKE ?"
            params.append(f"%{search}%")
        return self._paginate(
            select="SELECT * FROM flexi_accounts",
            where=where,
            params=params,
            order=f"CASE status WHEN '{CHECKED_IN}' THEN 0 ELSE 1 END, client_name",
            page=page,
        )

    def flexi_check_in(self, account_id: int, *, now: dt.datetime | None = None) -> dict:
        account = self.get_flexi_account(account_id)
        moment = self._now(now)
        if moment.date() > dt.date.fromisoformat(account["expiry_date"]):
            raise ExpiredError("This package has expired.")
        if pricing.is_hour_capped(account["package_type"]) and (account["remaining_hours"] or 0) <= 0:
            raise InsufficientBalanceError("No remaining hours.")
        if account["status"] == CHECKED_IN:
            raise ValidationError(f"{account['client_name']} is already checked in")
        self.conn.execute(
            "UPDATE flexi_accounts SET status = ?, last_check_in = ? WHERE id = ?",
            (CHECKED_IN, _stamp(moment), account_id),
        )
        self.conn.commit()
        log.info("%s is now active", account["client_name"])
        return self.get_flexi_account(account_id)

    def flexi_check_out(self, account_id: int, *, now: dt.datetime | None = None) -> dict:
        """Close the open visit of a member and charge it to their balance.

        The visit log and the balance change are written in one transaction.
        Calling this on a member who is not checked in changes nothing.
        """

        account = self.get_flexi_account(account_id)
        result = {"account": account, "log": None, "hours_spent": 0.0, "warning": None}
        if account["status"] != CHECKED_IN or not account["last_check_in"]:
            return result

        started = _parse_instant(account["last_check_in"], "last check-in")
        moment = max(self._now(now), started)
        hours_spent = pricing.session_hours(started, moment)
        capped = pricing.is_hour_capped(account["package_type"])

        with transaction(self.conn):
            cur = self.conn.execute(
                """
                UPDATE flexi_accounts
                SET status = ?,
                    remaining_hours = CASE WHEN ? THEN MAX(0, COALESCE(remaining_hours, 0) - ?)
                                           ELSE remaining_hours END
                WHERE id = ? AND status = ?
                """,
                (INACTIVE, int(capped), hours_spent, account_id, CHECKED_IN),
            )
            if cur.rowcount == 0:
                return result
            log_cur = self.conn.execute(
                """
                INSERT INTO flexi_logs(account_id, check_in_time, check_out_time, duration_hours)
                VALUES (?, ?, ?, ?)
                """,
                (account_id, account["last_check_in"], _stamp(moment), hours_spent),
            )

        plan = settings.FLEXI_PLANS.get(account["package_type"]) or {}
        cap = plan.get("session_cap")
        if cap is not None and hours_spent > cap:
            result["warning"] = f"Session exceeded {cap:g} hours limit ({hours_spent:g} hrs)."
            log.warning("%s: %s", account["client_name"], result["warning"])
        result["account"] = self.get_flexi_account(account_id)
        result["log"] = self.conn.execute(
            "SELECT * FROM flexi_logs WHERE id = ?", (log_cur.lastrowid,)
        ).fetchone()
        result["hours_spent"] = hours_spent
        log.info("Logged %s hours for %s", hours_spent, account["client_name"])
        return result

    def list_flexi_logs(self, account_id: int) -> list[dict]:
        self.get_flexi_account(account_id)
        return self.conn.execute(
            "SELECT * FROM flexi_logs WHERE account_id = ? ORDER BY check_in_time DESC",
            (account_id,),
        ).fetchall()

    def delete_flexi_account(self, account_id: int) -> None:
        self.get_flexi_account(account_id)
        self.conn.execute("DELETE FROM flexi_accounts WHERE id = ?", (account_id,))
        self.conn.commit()

    # ------------------------------------------------------------------
    # Pantry
    # ------------------------------------------------------------------
    def create_pantry_item(
        self,
        *,
        name: str,
        price: float,
        category: str = "Snack",
        is_available: bool = True,
    ) -> dict:
        if not name or not name.strip():
            raise ValidationError("Item name is required")
        if price is None or price < 0:
            raise ValidationError("Item price is required")
        cur = self.conn.execute(
            "INSERT INTO pantry_items(name, category, price, is_available) VALUES (?, ?, ?, ?)",
            (name.strip(), category, price, int(is_available)),
        )
        self.conn.commit()
        return self.get_pantry_item(cur.lastrowid)

    def get_pantry_item(self, item_id: int) -> dict:
        row = self.conn.execute("SELECT * FROM pantry_items WHERE id = ?", (item_id,)).fetchone()
        if not row:
            raise NotFoundError("Pantry item not found")
        return row

    def update_pantry_item(
        self,
        item_id: int,
        *,
        name: str | None = None,
        category: str | None = None,
        price: float | None = None,
        is_available: bool | None = None,
    ) -> dict:
        item = self.get_pantry_item(item_id)
        if price is not None and price < 0:
            raise ValidationError("Item price cannot be negative")
        self.conn.execute(
            "UPDATE pantry_items SET name = ?, category = ?, price = ?, is_available = ? WHERE id = ?",
            (
                name.strip() if name else item["name"],
                category if category is not None else item["category"],
                price if price is not None else item["price"],
                int(is_available) if is_available is not None else item["is_available"],
                item_id,
            ),
        )
        self.conn.commit()
        return self.get_pantry_item(item_id)

    def list_pantry_items(self, *, available_only: bool = False) -> list[dict]:
        where = " WHERE is_available = 1" if available_only else ""
        return self.conn.execute(f"SELECT * FROM pantry_items{where} ORDER BY name").fetchall()

    def record_pantry_sale(
        self,
        *,
        cart: Sequence[dict],
        sold_at: str | dt.datetime | None = None,
    ) -> dict:
        """Record a point-of-sale transaction from ``[{item_id, quantity}]``."""

        lines: dict[int, dict] = {}
        for entry in cart or ():
            if not isinstance(entry, dict) or entry.get("item_id") is None:
                raise ValidationError("Each cart line needs an item_id")
            try:
                quantity = int(entry.get("quantity", 1))
            except (TypeError, ValueError) as exc:
                raise ValidationError("Quantity must be a whole number") from exc
            if quantity <= 0:
                raise ValidationError("Quantity must be at least 1")
            item = self.get_pantry_item(entry["item_id"])
            if not item["is_available"]:
                raise ValidationError(f"{item['name']} is not available")
            line = lines.setdefault(item["id"], {"item": item, "quantity": 0})
            line["quantity"] += quantity
        if not lines:
            raise ValidationError("Cart is empty")

        summary = ", ".join(f"{line['quantity']}x {line['item']['name']}" for line in lines.values())
        total_quantity = sum(line["quantity"] for line in lines.values())
        total_amount = sum(line["quantity"] * line["item"]["price"] for line in lines.values())
        moment = _parse_instant(sold_at, "sale time") if sold_at else self._now()
        cur = self.conn.execute(
            """
            INSERT INTO pantry_transactions(items_summary, total_quantity, total_amount, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (summary, total_quantity, total_amount, _stamp(moment)),
        )
        self.conn.commit()
        log.info("Pantry sale %s for %s", summary, total_amount)
        return self.conn.execute(
            "SELECT * FROM pantry_transactions WHERE id = ?", (cur.lastrowid,)
        ).fetchone()

    def list_pantry_transactions(self, *, page: int = 0) -> dict:
        return self._paginate(
            select="SELECT * FROM pantry_transactions",
            where="",
            params=[],
            order="created_at DESC, id DESC",
            page=page,
        )

    # ------------------------------------------------------------------
    # Loyalty & reporting
    # ------------------------------------------------------------------
    def loyalty_records(self) -> list[dict]:
        bookings = self.conn.execute(
            """
            SELECT customer_name AS name, check_in_time AS date, duration_hours AS hours
            FROM bookings WHERE duration_hours >= ?
            """,
            (settings.LOYALTY_MIN_HOURS,),
        ).fetchall()
        flexi = self.conn.execute(
            """
            SELECT flexi_accounts.client_name AS name, flexi_logs.check_in_time AS date,
                   flexi_logs.duration_hours AS hours
            FROM flexi_logs
            JOIN flexi_accounts ON flexi_accounts.id = flexi_logs.account_id
            WHERE flexi_logs.duration_hours >= ?
            """,
            (settings.LOYALTY_MIN_HOURS,),
        ).fetchall()
        return bookings + flexi

    def leaderboard(self, *, search: str | None = None, page: int = 0) -> dict:
        ranked = build_leaderboard(self.loyalty_records())
        matches = filter_leaderboard(ranked, search)
        page = max(int(page or 0), 0)
        start = page * settings.PAGE_SIZE
        return {
            "top": ranked[:3],
            "items": matches[start : start + settings.PAGE_SIZE],
            "total": len(matches),
            "page": page,
            "pages": math.ceil(len(matches) / settings.PAGE_SIZE),
        }

    def report(self, *, start_date: str, end_date: str | None = None) -> dict:
        start = _parse_day(start_date, "start date")
        end = _parse_day(end_date, "end date") if end_date else start
        if end < start:
            raise ValidationError("End date must not be before start date")
        low = f"{start.isoformat()}T00:00:00"
        high = f"{end.isoformat()}T23:59:59"
        timesheet = self.conn.execute(
            """
            SELECT bookings.check_in_time, bookings.amount_paid, bookings.is_student,
                   bookings.is_board_examinee,
                   COALESCE(packages.name, bookings.package_name) AS package_name
            FROM bookings
            LEFT JOIN packages ON packages.id = bookings.package_id
            WHERE bookings.check_in_time >= ? AND bookings.check_in_time <= ?
            """,
            (low, high),
        ).fetchall()
        exclusive = self.conn.execute(
            """
            SELECT booking_date, amount_paid, pax FROM exclusive_bookings
            WHERE booking_date >= ? AND booking_date <= ?
            """,
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        flexi_sales = self.conn.execute(
            "SELECT created_at, amount_paid FROM flexi_accounts WHERE created_at >= ? AND created_at <= ?",
            (low, high),
        ).fetchall()
        flexi_logs = self.conn.execute(
            "SELECT check_in_time FROM flexi_logs WHERE check_in_time >= ? AND check_in_time <= ?",
            (low, high),
        ).fetchall()
        pantry = self.conn.execute(
            """
            SELECT created_at, total_amount, items_summary FROM pantry_transactions
            WHERE created_at >= ? AND created_at <= ?
            """,
            (low, high),
        ).fetchall()
        return build_report(
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            timesheet=timesheet,
            exclusive=exclusive,
            flexi_sales=flexi_sales,
            flexi_logs=flexi_logs,
            pantry=pantry,
        )

    def close(self) -> None:
        self.conn.close()
