import datetime as dt
import unittest

from dmdhub.hub import pricing


class RateCalculatorTestCase(unittest.TestCase):
    def test_fixed_package_ignores_hours(self) -> None:
        self.assertEqual(pricing.compute_rate(1000, False, 7, False, False), 1000)
        self.assertEqual(pricing.compute_rate(1000, False, 3, True, False), 920)

    def test_hourly_package_multiplies_hours(self) -> None:
        self.assertEqual(pricing.compute_rate(49, True, 3, False, False), 147)
        self.assertEqual(pricing.compute_rate(0, True, 5, True, False), 0)
        self.assertEqual(pricing.compute_rate(49, True, 0, False, False), 0)

    def test_student_and_examinee_share_one_discount(self) -> None:
        student = pricing.compute_rate(49, True, 3, True, False)
        examinee = pricing.compute_rate(49, True, 3, False, True)
        both = pricing.compute_rate(49, True, 3, True, True)
        self.assertEqual(student, 135)
        self.assertEqual(student, examinee)
        self.assertEqual(student, both)

    def test_rounds_only_the_final_total_half_up(self) -> None:
        # 49 * 2.5 = 122.5
        self.assertEqual(pricing.compute_rate(49, True, 2.5, False, False), 123)
        self.assertEqual(pricing.compute_rate(50, True, 0.5, False, False), 25)

    def test_exclusive_morning_discount(self) -> None:
        quote = pricing.exclusive_rate("09:00", 3)
        self.assertTrue(quote.discount_applied)
        self.assertEqual(quote.rate_per_hour, 819)
        self.assertEqual(quote.total, 2458)

    def test_exclusive_afternoon_full_rate(self) -> None:
        quote = pricing.exclusive_rate("14:00", 3)
        self.assertFalse(quote.discount_applied)
        self.assertEqual(quote.rate_per_hour, 999)
        self.assertEqual(quote.total, 2997)

    def test_exclusive_noon_cutoff(self) -> None:
        self.assertTrue(pricing.exclusive_rate("11:59", 1).discount_applied)
        self.assertFalse(pricing.exclusive_rate("12:00", 1).discount_applied)
        self.assertEqual(pricing.exclusive_rate("13:00", 0.5).total, 500)

    def test_exclusive_rejects_bad_clock(self) -> None:
        with self.assertRaises(ValueError):
            pricing.exclusive_rate("nine", 2)


class DurationResolverTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.hourly = {"is_hourly": 1, "duration": 0}
        self.day_pass = {"is_hourly": 0, "duration": 8}
        self.check_in = dt.datetime(2024, 3, 5, 9, 0)

    def test_effective_duration(self) -> None:
        self.assertEqual(pricing.effective_duration(self.hourly, 3), 3.0)
        self.assertEqual(pricing.effective_duration(self.day_pass, 3), 8.0)

    def test_scheduled_check_out(self) -> None:
        self.assertEqual(
            pricing.scheduled_check_out(self.check_in, self.hourly, 1.5),
            dt.datetime(2024, 3, 5, 10, 30),
        )
        self.assertEqual(
            pricing.scheduled_check_out(self.check_in, self.day_pass, 1),
            dt.datetime(2024, 3, 5, 17, 0),
        )

    def test_exclusive_end_same_day(self) -> None:
        end_date, end_time = pricing.exclusive_end("2024-05-01", "09:30", 2.5)
        self.assertEqual(end_date, dt.date(2024, 5, 1))
        self.assertEqual(end_time, dt.time(12, 0))

    def test_exclusive_end_rolls_past_midnight(self) -> None:
        end_date, end_time = pricing.exclusive_end("2024-05-01", "23:00", 4)
        self.assertEqual(end_date, dt.date(2024, 5, 2))
        self.assertEqual(end_time, dt.time(3, 0))

    def test_flexi_grind_terms(self) -> None:
        terms = pricing.flexi_terms("DMD Flexi Grind", "2024-01-01")
        self.assertEqual(terms.expiry_date, dt.date(2024, 1, 31))
        self.assertEqual(terms.total_hours, 60)
        self.assertEqual(terms.remaining_hours, 60)
        self.assertEqual(terms.price, 2609)
        self.assertIsNone(terms.session_cap)
        self.assertTrue(pricing.is_hour_capped("DMD Flexi Grind"))

    def test_monthly_focus_terms(self) -> None:
        terms = pricing.flexi_terms("Monthly Focus", dt.date(2024, 1, 1))
        self.assertEqual(terms.expiry_date, dt.date(2024, 2, 10))
        self.assertIsNone(terms.total_hours)
        self.assertIsNone(terms.remaining_hours)
        self.assertEqual(terms.price, 5099)
        self.assertEqual(terms.session_cap, 5)
        self.assertFalse(pricing.is_hour_capped("Monthly Focus"))

    def test_unknown_flexi_package(self) -> None:
        with self.assertRaises(ValueError):
            pricing.flexi_terms("Weekly Sprint", "2024-01-01")

    def test_extension_uses_its_own_rate(self) -> None:
        terms = pricing.extension_terms(
            check_out_time=dt.datetime(2024, 3, 5, 12, 0),
            duration_hours=3,
            amount_paid=135,
            hours=2,
        )
        self.assertEqual(terms.check_out_time, dt.datetime(2024, 3, 5, 14, 0))
        self.assertEqual(terms.duration_hours, 5)
        self.assertEqual(terms.additional_cost, 98)
        self.assertEqual(terms.amount_paid, 233)

    def test_extension_with_custom_cost_and_no_check_out(self) -> None:
        now = dt.datetime(2024, 3, 5, 15, 0)
        terms = pricing.extension_terms(
            check_out_time=None,
            duration_hours=None,
            amount_paid=None,
            hours=0.5,
            additional_cost=30,
            now=now,
        )
        self.assertEqual(terms.check_out_time, dt.datetime(2024, 3, 5, 15, 30))
        self.assertEqual(terms.duration_hours, 0.5)
        self.assertEqual(terms.amount_paid, 30)

    def test_extension_requires_positive_hours(self) -> None:
        with self.assertRaises(ValueError):
            pricing.extension_terms(
                check_out_time=None, duration_hours=1, amount_paid=49, hours=0
            )

    def test_session_hours(self) -> None:
        start = dt.datetime(2024, 3, 5, 9, 0)
        self.assertEqual(pricing.session_hours(start, start + dt.timedelta(minutes=90)), 1.5)
        self.assertEqual(pricing.session_hours(start, start + dt.timedelta(minutes=100)), 1.67)
        self.assertEqual(pricing.session_hours(start, start + dt.timedelta(seconds=59)), 0)
        self.assertEqual(pricing.session_hours(start, start - dt.timedelta(hours=1)), 0)


if __name__ == "__main__":
    unittest.main()
