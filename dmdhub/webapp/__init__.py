"""Flask application exposing the hub back office as JSON endpoints."""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import sqlite3
from typing import Any

from flask import (
    Flask,
    Response,
    g,
    jsonify,
    request,
    session,
)

from dmdhub.hub import settings
from dmdhub.hub.formatting import format_date, format_peso, format_time
from dmdhub.hub.reports import report_csv
from dmdhub.hub.system import (
    AuthorizationError,
    HubSystem,
    NotFoundError,
    ValidationError,
)

log = logging.getLogger(__name__)

PUBLIC_ENDPOINTS = {"login", "health", "static"}


TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"", "0", "false", "no", "off"}


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _flag(data: dict, key: str, default: bool | None = False) -> bool | None:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValidationError(f"{key} must be true or false")
    return bool(value)


def _number(data: dict, key: str, default: float | None = None) -> float | None:
    value = data.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be a number") from exc


def _booking_view(booking: dict) -> dict:
    booking = dict(booking)
    booking["amount_display"] = format_peso(booking["amount_paid"])
    booking["check_in_display"] = format_time(booking["check_in_time"])
    booking["check_out_display"] = format_time(booking["check_out_time"])
    booking["date_display"] = format_date(booking["check_in_time"])
    return booking


def _exclusive_view(booking: dict) -> dict:
    booking = dict(booking)
    booking["amount_display"] = format_peso(booking["amount_paid"])
    booking["time_range"] = f"{format_time(booking['start_time'])} - {format_time(booking['end_time'])}"
    booking["date_display"] = format_date(booking["booking_date"])
    return booking


def _month_bounds(today: dt.date) -> tuple[str, str]:
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1).isoformat(), today.replace(day=last_day).isoformat()


def create_app(database_path: str | None = None, **overrides: Any) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.SECRET_KEY
    app.config["DATABASE_PATH"] = database_path or settings.DATABASE_PATH
    app.config.update(overrides)

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    system = HubSystem(app.config["DATABASE_PATH"])
    app.extensions["hub_system"] = system

    # ------------------------------------------------------------------
    # Sessions & errors
    # ------------------------------------------------------------------
    @app.before_request
    def require_session() -> None:
        if request.endpoint in PUBLIC_ENDPOINTS:
            return
        header = request.headers.get("Authorization", "")
        token = header[7:] if header.startswith("Bearer ") else session.get("token")
        g.hub_session = system.resolve_session(token)

    @app.errorhandler(AuthorizationError)
    def handle_authorization(exc: AuthorizationError) -> Any:
        return jsonify({"error": str(exc)}), 401

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError) -> Any:
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError) -> Any:
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(sqlite3.Error)
    def handle_database(exc: sqlite3.Error) -> Any:
        log.exception("Database call failed")
        return jsonify({"error": "Database error, please retry"}), 500

    @app.get("/health")
    def health() -> Any:
        return {"status": "ok", "service": "DMD Hub"}, 200

    @app.post("/auth/login")
    def login() -> Any:
        data = _payload()
        context = system.sign_in(email=data.get("email", ""), password=data.get("password", ""))
        session["token"] = context.token
        return jsonify(
            {
                "token": context.token,
                "email": context.email,
                "role": context.role,
                "expires_at": context.expires_at.isoformat(),
            }
        )

    @app.post("/auth/logout")
    def logout() -> Any:
        system.sign_out(g.hub_session.token)
        session.pop("token", None)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------
    @app.get("/packages")
    def packages() -> Any:
        return jsonify(system.list_packages())

    @app.post("/packages")
    def create_package() -> Any:
        data = _payload()
        package = system.create_package(
            name=data.get("name", ""),
            price=_number(data, "price", 0),
            duration=_number(data, "duration", 0),
            is_hourly=_flag(data, "is_hourly"),
        )
        return jsonify(package), 201

    @app.put("/packages/<int:package_id>")
    def update_package(package_id: int) -> Any:
        data = _payload()
        package = system.update_package(
            package_id,
            name=data.get("name"),
            price=_number(data, "price"),
            duration=_number(data, "duration"),
            is_hourly=_flag(data, "is_hourly", None),
        )
        return jsonify(package)

    @app.delete("/packages/<int:package_id>")
    def delete_package(package_id: int) -> Any:
        system.delete_package(package_id)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Hub bookings
    # ------------------------------------------------------------------
    @app.get("/bookings")
    def bookings() -> Any:
        result = system.list_bookings(
            search=request.args.get("q") or None,
            page=request.args.get("page", 0, type=int),
        )
        result["items"] = [_booking_view(row) for row in result["items"]]
        return jsonify(result)

    @app.post("/bookings")
    def check_in() -> Any:
        data = _payload()
        booking = system.check_in(
            customer_name=data.get("customer_name", ""),
            package_id=data.get("package_id"),
            duration_hours=_number(data, "duration_hours", 1),
            seat_number=data.get("seat_number") or None,
            is_student=_flag(data, "is_student"),
            is_board_examinee=_flag(data, "is_board_examinee"),
            is_group=_flag(data, "is_group"),
            is_loyalty=_flag(data, "is_loyalty"),
            rentals=data.get("rentals") or None,
            notes=data.get("notes") or None,
        )
        return jsonify(_booking_view(booking)), 201

    @app.get("/bookings/<int:booking_id>")
    def booking_detail(booking_id: int) -> Any:
        return jsonify(_booking_view(system.get_booking(booking_id)))

    @app.put("/bookings/<int:booking_id>")
    def update_booking(booking_id: int) -> Any:
        data = _payload()
        booking = system.update_booking(
            booking_id,
            customer_name=data.get("customer_name"),
            seat_number=data.get("seat_number"),
            check_in_time=data.get("check_in_time"),
            check_out_time=data.get("check_out_time"),
            amount_paid=_number(data, "amount_paid"),
            status=data.get("status"),
            notes=data.get("notes"),
        )
        return jsonify(_booking_view(booking))

    @app.post("/bookings/<int:booking_id>/extend")
    def extend_booking(booking_id: int) -> Any:
        data = _payload()
        booking = system.extend_booking(
            booking_id,
            hours=_number(data, "hours", 1),
            additional_cost=_number(data, "additional_cost"),
        )
        return jsonify(_booking_view(booking))

    @app.post("/bookings/<int:booking_id>/checkout")
    def check_out(booking_id: int) -> Any:
        return jsonify(_booking_view(system.check_out(booking_id)))

    @app.delete("/bookings/<int:booking_id>")
    def delete_booking(booking_id: int) -> Any:
        system.delete_booking(booking_id)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Exclusive space
    # ------------------------------------------------------------------
    @app.get("/exclusive")
    def exclusive_bookings() -> Any:
        result = system.list_exclusive_bookings(
            search=request.args.get("q") or None,
            page=request.args.get("page", 0, type=int),
        )
        result["items"] = [_exclusive_view(row) for row in result["items"]]
        return jsonify(result)

    @app.post("/exclusive")
    def create_exclusive() -> Any:
        data = _payload()
        booking = system.create_exclusive_booking(
            client_name=data.get("client_name", ""),
            booking_date=data.get("booking_date") or dt.date.today().isoformat(),
            start_time=data.get("start_time") or "09:00",
            duration_hours=_number(data, "duration_hours", 3),
            pax=int(_number(data, "pax", 1)),
            guest_list=data.get("guest_list") or None,
            notes=data.get("notes") or None,
        )
        return jsonify(_exclusive_view(booking)), 201

    @app.put("/exclusive/<int:booking_id>")
    def update_exclusive(booking_id: int) -> Any:
        data = _payload()
        pax = _number(data, "pax")
        booking = system.update_exclusive_booking(
            booking_id,
            client_name=data.get("client_name"),
            booking_date=data.get("booking_date"),
            start_time=data.get("start_time"),
            duration_hours=_number(data, "duration_hours"),
            pax=int(pax) if pax is not None else None,
            guest_list=data.get("guest_list"),
            notes=data.get("notes"),
        )
        return jsonify(_exclusive_view(booking))

    @app.post("/exclusive/<int:booking_id>/complete")
    def complete_exclusive(booking_id: int) -> Any:
        return jsonify(_exclusive_view(system.complete_exclusive_booking(booking_id)))

    @app.delete("/exclusive/<int:booking_id>")
    def delete_exclusive(booking_id: int) -> Any:
        system.delete_exclusive_booking(booking_id)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Flexi memberships
    # ------------------------------------------------------------------
    @app.get("/flexi")
    def flexi_accounts() -> Any:
        return jsonify(
            system.list_flexi_accounts(
                search=request.args.get("q") or None,
                page=request.args.get("page", 0, type=int),
            )
        )

    @app.post("/flexi")
    def register_flexi() -> Any:
        data = _payload()
        account = system.register_flexi(
            client_name=data.get("client_name", ""),
            package_type=data.get("package_type") or settings.FLEXI_GRIND,
            start_date=data.get("start_date") or None,
            amount_paid=_number(data, "amount_paid"),
            notes=data.get("notes") or None,
        )
        return jsonify(account), 201

    @app.post("/flexi/<int:account_id>/checkin")
    def flexi_check_in(account_id: int) -> Any:
        return jsonify(system.flexi_check_in(account_id))

    @app.post("/flexi/<int:account_id>/checkout")
    def flexi_check_out(account_id: int) -> Any:
        return jsonify(system.flexi_check_out(account_id))

    @app.get("/flexi/<int:account_id>/logs")
    def flexi_logs(account_id: int) -> Any:
        return jsonify(system.list_flexi_logs(account_id))

    @app.delete("/flexi/<int:account_id>")
    def delete_flexi(account_id: int) -> Any:
        system.delete_flexi_account(account_id)
        return jsonify({"ok": True})

    # ------------------------------------------------------------------
    # Pantry
    # ------------------------------------------------------------------
    @app.get("/pantry/items")
    def pantry_items() -> Any:
        available_only = request.args.get("available") in ("1", "true")
        return jsonify(system.list_pantry_items(available_only=available_only))

    @app.post("/pantry/items")
    def create_pantry_item() -> Any:
        data = _payload()
        item = system.create_pantry_item(
            name=data.get("name", ""),
            price=_number(data, "price"),
            category=data.get("category") or "Snack",
            is_available=_flag(data, "is_available", True),
        )
        return jsonify(item), 201

    @app.put("/pantry/items/<int:item_id>")
    def update_pantry_item(item_id: int) -> Any:
        data = _payload()
        item = system.update_pantry_item(
            item_id,
            name=data.get("name"),
            category=data.get("category"),
            price=_number(data, "price"),
            is_available=_flag(data, "is_available", None),
        )
        return jsonify(item)

    @app.get("/pantry/sales")
    def pantry_sales() -> Any:
        return jsonify(system.list_pantry_transactions(page=request.args.get("page", 0, type=int)))

    @app.post("/pantry/sales")
    def record_pantry_sale() -> Any:
        sale = system.record_pantry_sale(cart=_payload().get("cart") or [])
        return jsonify(sale), 201

    # ------------------------------------------------------------------
    # Loyalty & reports
    # ------------------------------------------------------------------
    @app.get("/loyalty")
    def loyalty() -> Any:
        board = system.leaderboard(
            search=request.args.get("q") or None,
            page=request.args.get("page", 0, type=int),
        )
        for entry in board["top"] + board["items"]:
            entry["last_visit_display"] = format_date(entry["last_visit"])
        return jsonify(board)

    def _report_from_args() -> dict:
        default_start, default_end = _month_bounds(dt.date.today())
        start = request.args.get("start") or default_start
        end = request.args.get("end") or (start if request.args.get("start") else default_end)
        return system.report(start_date=start, end_date=end)

    @app.get("/reports")
    def reports() -> Any:
        report = _report_from_args()
        report["totals_display"] = {
            key: format_peso(value) for key, value in report["totals"].items()
        }
        return jsonify(report)

    @app.get("/reports/export")
    def export_report() -> Any:
        report = _report_from_args()
        return Response(
            report_csv(report),
            mimetype="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename=DMD-Report-{report['start_date']}.csv"
            },
        )

    return app


__all__ = ["create_app"]
