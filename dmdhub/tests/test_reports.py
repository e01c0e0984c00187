import unittest

from dmdhub.hub import reports
from dmdhub.hub.formatting import day_key, format_date, format_peso, format_time


class LeaderboardTestCase(unittest.TestCase):
    def test_normalize_name_variants(self) -> None:
        key = reports.normalize_name("Juan Dela Cruz")
        self.assertEqual(key, "juan cruz")
        self.assertEqual(reports.normalize_name("Juan D. Cruz"), key)
        self.assertEqual(reports.normalize_name("JUAN DELA CRUZ"), key)
        self.assertEqual(reports.normalize_name("  juan   dela  cruz "), key)
        # two words are kept whole, so a truncated surname stays apart
        self.assertEqual(reports.normalize_name("Juan Dela"), "juan dela")
        self.assertNotEqual(reports.normalize_name("Juan Dela"), key)
        self.assertEqual(reports.normalize_name("Ana"), "ana")

    def test_normalize_blank_name(self) -> None:
        self.assertEqual(reports.normalize_name(""), "unknown")
        self.assertEqual(reports.normalize_name(None), "unknown")

    def test_groups_and_uses_latest_spelling(self) -> None:
        records = [
            {"name": "Juan Dela Cruz", "date": "2024-03-01T09:00:00", "hours": 3},
            {"name": "JUAN D. CRUZ", "date": "2024-03-09T09:00:00", "hours": 4},
            {"name": "juan dela cruz", "date": "2024-03-05T09:00:00", "hours": 5},
            {"name": "Maria Santos", "date": "2024-03-02T09:00:00", "hours": 8},
        ]
        board = reports.build_leaderboard(records)
        self.assertEqual(len(board), 2)
        leader = board[0]
        self.assertEqual(leader["name"], "JUAN D. CRUZ")
        self.assertEqual(leader["visit_count"], 3)
        self.assertEqual(leader["total_hours"], 12)
        self.assertEqual(leader["last_visit"], "2024-03-09T09:00:00")
        self.assertEqual(leader["rank"], 1)
        self.assertEqual(leader["badge"], "gold")
        self.assertEqual(board[1]["badge"], "silver")

    def test_ties_break_on_hours(self) -> None:
        records = [
            {"name": "Ana Reyes", "date": "2024-03-01", "hours": 3},
            {"name": "Ben Cruz", "date": "2024-03-01", "hours": 6},
            {"name": "Carla Lim", "date": "2024-03-01", "hours": 4},
            {"name": "Dino Go", "date": "2024-03-01", "hours": 3},
            {"name": "Dino Go", "date": "2024-03-02", "hours": 3},
        ]
        board = reports.build_leaderboard(records)
        self.assertEqual([entry["name"] for entry in board], ["Dino Go", "Ben Cruz", "Carla Lim", "Ana Reyes"])
        self.assertEqual([entry["rank"] for entry in board], [1, 2, 3, 4])
        self.assertIsNone(board[3]["badge"])

    def test_filter_keeps_overall_rank(self) -> None:
        records = [
            {"name": "Ana Reyes", "date": "2024-03-01", "hours": 3},
            {"name": "Ben Cruz", "date": "2024-03-01", "hours": 6},
            {"name": "Ben Cruz", "date": "2024-03-02", "hours": 6},
            {"name": "Anton Lim", "date": "2024-03-01", "hours": 5},
        ]
        board = reports.build_leaderboard(records)
        filtered = reports.filter_leaderboard(board, "an")
        self.assertEqual([entry["name"] for entry in filtered], ["Anton Lim", "Ana Reyes"])
        self.assertEqual([entry["rank"] for entry in filtered], [2, 3])
        self.assertEqual(reports.filter_leaderboard(board, ""), board)


class ReportAggregatorTestCase(unittest.TestCase):
    def test_parse_items_summary(self) -> None:
        self.assertEqual(
            reports.parse_items_summary("2x Oreo, 1x Coke, 3x Chips"),
            {"Oreo": 2, "Coke": 1, "Chips": 3},
        )
        self.assertEqual(reports.parse_items_summary("Oreo, x2 Coke, 4x Iced Tea"), {"Iced Tea": 4})
        self.assertEqual(reports.parse_items_summary(None), {})

    def test_same_day_scenario(self) -> None:
        report = reports.build_report(
            start_date="2024-03-05",
            end_date="2024-03-05",
            timesheet=[
                {
                    "check_in_time": "2024-03-05T09:00:00",
                    "amount_paid": 250,
                    "is_student": 1,
                    "is_board_examinee": 0,
                    "package_name": "Day Pass",
                },
                {
                    "check_in_time": "2024-03-05T13:00:00",
                    "amount_paid": 250,
                    "is_student": 0,
                    "is_board_examinee": 0,
                    "package_name": "Day Pass",
                },
            ],
            exclusive=[{"booking_date": "2024-03-05", "amount_paid": 2457, "pax": 5}],
            flexi_sales=[],
            flexi_logs=[],
            pantry=[],
        )
        self.assertEqual(len(report["days"]), 1)
        day = report["days"][0]
        self.assertEqual(day["check_ins"], 7)
        self.assertEqual(day["total"], 2957)
        self.assertEqual(report["check_ins"], 7)
        self.assertEqual(report["totals"]["grand_total"], 2957)
        self.assertEqual(report["customer_types"]["Student"], 1)
        self.assertEqual(report["customer_types"]["Regular"], 1)
        self.assertEqual(report["customer_types"]["Exclusive"], 5)
        self.assertEqual(report["packages"], [{"name": "Day Pass", "bookings": 2}])

    def test_flexi_logs_are_traffic_only(self) -> None:
        report = reports.build_report(
            start_date="2024-03-01",
            end_date="2024-03-31",
            timesheet=[],
            exclusive=[],
            flexi_sales=[{"created_at": "2024-03-02T10:00:00", "amount_paid": 2609}],
            flexi_logs=[
                {"check_in_time": "2024-03-03T09:00:00"},
                {"check_in_time": "2024-03-04T09:00:00"},
            ],
            pantry=[],
        )
        self.assertEqual([day["date"] for day in report["days"]], ["2024-03-02", "2024-03-03", "2024-03-04"])
        self.assertEqual(report["days"][0]["flexi"], 2609)
        self.assertEqual(report["days"][0]["check_ins"], 0)
        self.assertEqual(report["days"][1]["total"], 0)
        self.assertEqual(report["days"][1]["check_ins"], 1)
        self.assertEqual(report["totals"]["flexi"], 2609)
        self.assertEqual(report["check_ins"], 2)
        self.assertEqual(report["customer_types"]["Flexi Member"], 1)

    def test_top_pantry_items_truncate_to_five(self) -> None:
        report = reports.build_report(
            start_date="2024-03-05",
            end_date="2024-03-05",
            timesheet=[],
            exclusive=[],
            flexi_sales=[],
            flexi_logs=[],
            pantry=[
                {
                    "created_at": "2024-03-05T10:00:00",
                    "total_amount": 300,
                    "items_summary": "6x Oreo, 5x Coke, 4x Chips, 3x Water, 2x Coffee, 1x Gum",
                },
                {
                    "created_at": "2024-03-05T15:00:00",
                    "total_amount": 50,
                    "items_summary": "2x Coke",
                },
            ],
        )
        top = report["top_pantry_items"]
        self.assertEqual(len(top), 5)
        self.assertEqual(top[0], {"name": "Coke", "count": 7})
        self.assertNotIn("Gum", [item["name"] for item in top])
        self.assertEqual(report["totals"]["pantry"], 350)

    def test_report_csv(self) -> None:
        report = reports.build_report(
            start_date="2024-03-05",
            end_date="2024-03-05",
            timesheet=[
                {"check_in_time": "2024-03-05T09:00:00", "amount_paid": 250, "package_name": "Day Pass"}
            ],
            exclusive=[],
            flexi_sales=[],
            flexi_logs=[],
            pantry=[{"created_at": "2024-03-05T12:00:00", "total_amount": 12.5, "items_summary": "1x Gum"}],
        )
        lines = reports.report_csv(report).splitlines()
        self.assertEqual(
            lines[0],
            "Date,Check-ins,Packages,Exclusive Income,Flexi Income,Pantry Income,Total Income",
        )
        self.assertEqual(lines[1], "2024-03-05,1,250,0,0,12.50,262.50")


class FormattingTestCase(unittest.TestCase):
    def test_format_peso(self) -> None:
        self.assertEqual(format_peso(1234), "₱1,234")
        self.assertEqual(format_peso(1234.5), "₱1,234.50")
        self.assertEqual(format_peso(None), "₱0")

    def test_format_date_and_time(self) -> None:
        self.assertEqual(format_date("2024-03-05T09:00:00"), "Mar 05, 2024")
        self.assertEqual(format_time("2024-03-05T13:05:00"), "1:05 PM")
        self.assertEqual(format_time("09:00"), "9:00 AM")
        self.assertEqual(format_time("00:30"), "12:30 AM")

    def test_unparseable_values_come_back_raw(self) -> None:
        self.assertEqual(format_date("sometime"), "sometime")
        self.assertEqual(format_time("25:99"), "25:99")
        self.assertEqual(day_key("2024-13-45T00:00:00"), "2024-13-45")

    def test_day_key(self) -> None:
        self.assertEqual(day_key("2024-03-05"), "2024-03-05")
        self.assertEqual(day_key("2024-03-05T23:59:59"), "2024-03-05")


if __name__ == "__main__":
    unittest.main()
