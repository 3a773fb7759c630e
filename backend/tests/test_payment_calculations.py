import unittest
from decimal import Decimal

from stitchdesk.services import payment_calculations as calc
from stitchdesk.services.payment_calculations import (
    PaymentInfo,
    ServiceLine,
    calculate_active_total,
    calculate_line_total,
    calculate_payment_status,
    format_cents,
    summarize_order,
)


def payment(amount, status="completed", refunded=0, **extra):
    return {"amount_cents": amount, "refunded_amount_cents": refunded, "status": status, **extra}


class PaymentStatusScenarioTests(unittest.TestCase):
    def test_fully_paid(self):
        summary = calculate_payment_status(10000, [payment(10000)])
        self.assertEqual(summary.net_paid_cents, 10000)
        self.assertEqual(summary.amount_due_cents, 0)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_PAID)
        self.assertEqual(summary.percentage, 100)

    def test_partial_refund_leaves_balance(self):
        summary = calculate_payment_status(10000, [payment(10000, refunded=3000)])
        self.assertEqual(summary.net_paid_cents, 7000)
        self.assertEqual(summary.amount_due_cents, 3000)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_PARTIAL)
        self.assertEqual(summary.percentage, 70)

    def test_overpaid_shows_credit(self):
        summary = calculate_payment_status(5000, [payment(6000)])
        self.assertEqual(summary.net_paid_cents, 6000)
        self.assertEqual(summary.amount_due_cents, -1000)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_OVERPAID)
        self.assertEqual(summary.credit_cents, 1000)
        self.assertEqual(summary.balance_due_cents, 0)
        self.assertEqual(format_cents(summary.credit_cents), "$10.00")

    def test_nothing_paid_is_unpaid(self):
        summary = calculate_payment_status(10000, [])
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_UNPAID)
        self.assertEqual(summary.percentage, 0)
        self.assertEqual(summary.balance_due_cents, 10000)


class PaymentFilterTests(unittest.TestCase):
    def test_non_contributing_statuses_are_ignored(self):
        for status in ("pending", "failed", "cancelled"):
            with self.subTest(status=status):
                summary = calculate_payment_status(10000, [payment(99999, status=status, refunded=500)])
                self.assertEqual(summary.total_paid_cents, 0)
                self.assertEqual(summary.total_refunded_cents, 0)
                self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_UNPAID)

    def test_refunded_payment_still_contributes_its_refund(self):
        summary = calculate_payment_status(10000, [payment(4000, status="refunded", refunded=4000), payment(10000)])
        self.assertEqual(summary.total_paid_cents, 14000)
        self.assertEqual(summary.total_refunded_cents, 4000)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_PAID)

    def test_status_is_case_insensitive(self):
        summary = calculate_payment_status(10000, [payment(2500, status="COMPLETED")])
        self.assertEqual(summary.net_paid_cents, 2500)

    def test_refund_rows_are_not_double_counted(self):
        rows = [
            payment(10000, refunded=3000),
            {"type": "refund", "amount_cents": -3000, "status": "completed"},
        ]
        summary = calculate_payment_status(10000, rows)
        self.assertEqual(summary.net_paid_cents, 7000)

    def test_orm_like_objects_are_accepted(self):
        info = PaymentInfo(amount_cents=5000, refunded_amount_cents=0, status="completed")
        summary = calculate_payment_status(10000, [info])
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_PARTIAL)
        self.assertEqual(summary.percentage, 50)


class EdgeCaseTests(unittest.TestCase):
    def test_refund_overrun_is_clamped(self):
        summary = calculate_payment_status(10000, [payment(2000, refunded=5000), payment(3000)])
        self.assertEqual(summary.total_refunded_cents, 2000)
        self.assertEqual(summary.net_paid_cents, 3000)

    def test_no_charges_is_unpaid_without_charges(self):
        summary = calculate_payment_status(0, [])
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_UNPAID)
        self.assertEqual(summary.percentage, 0)
        self.assertFalse(summary.has_charges)

    def test_zero_total_with_payment_is_overpaid(self):
        summary = calculate_payment_status(0, [payment(500)])
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_OVERPAID)
        self.assertEqual(summary.percentage, 100)

    def test_negative_total_reads_as_credit(self):
        summary = calculate_payment_status(-500, [])
        self.assertEqual(summary.amount_due_cents, -500)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_OVERPAID)
        self.assertEqual(summary.percentage, 0)

    def test_percentage_rounds_half_up_and_is_not_capped(self):
        self.assertEqual(calculate_payment_status(3, [payment(1)]).percentage, 33)
        self.assertEqual(calculate_payment_status(200, [payment(1)]).percentage, 1)
        self.assertEqual(calculate_payment_status(1000, [payment(1500)]).percentage, 150)

    def test_none_values_read_as_zero(self):
        summary = calculate_payment_status(None, [{"amount_cents": None, "refunded_amount_cents": None, "status": None}])
        self.assertEqual(summary.net_paid_cents, 0)
        self.assertEqual(summary.active_total_cents, 0)

    def test_overpaid_credit_matches_negative_amount_due(self):
        for total, paid in ((100, 101), (5000, 9000), (0, 1)):
            with self.subTest(total=total, paid=paid):
                summary = calculate_payment_status(total, [payment(paid)])
                self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_OVERPAID)
                self.assertLess(summary.amount_due_cents, 0)
                self.assertEqual(summary.credit_cents, -summary.amount_due_cents)

    def test_repeated_calls_return_identical_output(self):
        payments = [payment(4000), payment(1000, status="pending")]
        self.assertEqual(calculate_payment_status(10000, payments), calculate_payment_status(10000, payments))


class ActiveTotalTests(unittest.TestCase):
    def setUp(self):
        self.lines = [
            {"quantity": 1, "unit_price_cents": 4000},
            {"quantity": 2, "unit_price_cents": 1500},
            {"quantity": 5, "unit_price_cents": 99999, "is_removed": True},
        ]

    def test_removed_lines_are_excluded(self):
        self.assertEqual(calculate_active_total(self.lines), 7000)

    def test_discount_and_tax(self):
        self.assertEqual(calculate_active_total(self.lines, discount_cents=1000, tax_cents=480), 6480)

    def test_missing_discount_and_tax_read_as_zero(self):
        self.assertEqual(calculate_active_total(self.lines, None, None), 7000)

    def test_stored_line_total_wins(self):
        lines = [{"quantity": 3, "unit_price_cents": 1000, "line_total_cents": 2500}]
        self.assertEqual(calculate_active_total(lines), 2500)

    def test_decimal_quantity_rounds_half_up(self):
        self.assertEqual(calculate_line_total(Decimal("1.5"), 333), 500)
        self.assertEqual(calculate_line_total("0.25", 2), 1)
        self.assertEqual(calculate_active_total([ServiceLine(quantity=Decimal("1.5"), unit_price_cents=4000)]), 6000)

    def test_large_discount_keeps_negative_total(self):
        self.assertEqual(calculate_active_total(self.lines, discount_cents=10000), -3000)

    def test_summarize_order_combines_both_steps(self):
        summary = summarize_order(self.lines, [payment(7000)], discount_cents=500)
        self.assertEqual(summary.active_total_cents, 6500)
        self.assertEqual(summary.payment_status, calc.PAYMENT_STATUS_OVERPAID)


class FormatCentsTests(unittest.TestCase):
    def test_format(self):
        self.assertEqual(format_cents(123456), "$1,234.56")
        self.assertEqual(format_cents(-1000), "-$10.00")
        self.assertEqual(format_cents(5), "$0.05")


if __name__ == "__main__":
    unittest.main()
