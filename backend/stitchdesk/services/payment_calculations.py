# Overview: Pure balance math for orders; active totals, net paid, amount due, and payment status.

"""
Payment Calculations

WHY: Every place that shows a balance (order detail, invoice status, pickup
pre-check, client view model) must agree on the same numbers. All of them
call into this module instead of summing service lines and payments inline.

DESIGN PRINCIPLES:
- Pure functions: no database access, no clock, no shared state
- Integer cents everywhere; quantities may be decimal, line totals are rounded half-up
- Permissive input: None reads as 0, refund overruns are clamped per payment
- amount_due is never clamped (negative means the customer has a credit)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_OVERPAID = "overpaid"


# =============================================================================
# PAYMENT RECORD STATUS (CONSTANTS)
# =============================================================================

RECORD_PENDING = "pending"
RECORD_COMPLETED = "completed"
RECORD_FAILED = "failed"
RECORD_REFUNDED = "refunded"
RECORD_PARTIALLY_REFUNDED = "partially_refunded"
RECORD_CANCELLED = "cancelled"

VALID_RECORD_STATUSES = [
    RECORD_PENDING,
    RECORD_COMPLETED,
    RECORD_FAILED,
    RECORD_REFUNDED,
    RECORD_PARTIALLY_REFUNDED,
    RECORD_CANCELLED,
]

# Only money that actually changed hands counts toward net paid
CONTRIBUTING_STATUSES = frozenset({
    RECORD_COMPLETED,
    RECORD_PARTIALLY_REFUNDED,
    RECORD_REFUNDED,
})

# Refund transactions are already reflected in refunded_amount_cents
RECORD_TYPE_REFUND = "refund"


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class ServiceLine:
    """One billable unit of work, reduced to the fields the math needs."""
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int | None = None
    is_removed: bool = False
    is_done: bool = False

    @classmethod
    def from_record(cls, record: Any) -> "ServiceLine":
        """Build from a mapping, an ORM row, or another ServiceLine."""
        if isinstance(record, cls):
            return record
        line_total = _read(record, "line_total_cents")
        return cls(
            quantity=_to_decimal(_read(record, "quantity")),
            unit_price_cents=_to_int(_read(record, "unit_price_cents")),
            line_total_cents=None if line_total is None else _to_int(line_total),
            is_removed=bool(_read(record, "is_removed")),
            is_done=bool(_read(record, "is_done")),
        )


@dataclass(frozen=True)
class PaymentInfo:
    """One payment attempt as seen by the balance math."""
    amount_cents: int
    refunded_amount_cents: int
    status: str
    type: str | None = None

    @classmethod
    def from_record(cls, record: Any) -> "PaymentInfo":
        if isinstance(record, cls):
            return record
        status = _read(record, "status")
        return cls(
            amount_cents=_to_int(_read(record, "amount_cents")),
            refunded_amount_cents=_to_int(_read(record, "refunded_amount_cents")),
            status=(status or "").lower(),
            type=_read(record, "type"),
        )

    @property
    def contributes(self) -> bool:
        return self.status in CONTRIBUTING_STATUSES and self.type != RECORD_TYPE_REFUND


@dataclass(frozen=True)
class PaymentSummary:
    """
    Canonical payment summary for one order.

    amount_due is signed: negative values are a credit owed to the customer.
    """
    active_total_cents: int
    total_paid_cents: int
    total_refunded_cents: int
    net_paid_cents: int
    amount_due_cents: int
    percentage: int
    payment_status: str

    @property
    def balance_due_cents(self) -> int:
        return max(self.amount_due_cents, 0)

    @property
    def credit_cents(self) -> int:
        return max(-self.amount_due_cents, 0)

    @property
    def has_charges(self) -> bool:
        """False for the 'no charges' case (nothing billed, nothing paid)."""
        return not (self.active_total_cents == 0 and self.net_paid_cents == 0)

    def to_dict(self) -> dict:
        return {
            "active_total_cents": self.active_total_cents,
            "total_paid_cents": self.total_paid_cents,
            "total_refunded_cents": self.total_refunded_cents,
            "net_paid_cents": self.net_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "balance_due_cents": self.balance_due_cents,
            "credit_cents": self.credit_cents,
            "percentage": self.percentage,
            "payment_status": self.payment_status,
        }


# =============================================================================
# ACTIVE TOTAL
# =============================================================================

def calculate_line_total(quantity: Any, unit_price_cents: Any) -> int:
    """
    quantity x unit price, rounded half-up to whole cents.

    Used by the server when it stores line_total_cents, so stored and
    derived totals never disagree.
    """
    amount = _to_decimal(quantity) * _to_int(unit_price_cents)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_amount(line: Any) -> int:
    """Amount a single line contributes; line_total_cents wins when present."""
    line = ServiceLine.from_record(line)
    if line.line_total_cents is not None:
        return line.line_total_cents
    return calculate_line_total(line.quantity, line.unit_price_cents)


def calculate_subtotal(lines: Iterable[Any]) -> int:
    """Sum of active (non-removed) line amounts."""
    total = 0
    for raw in lines or ():
        line = ServiceLine.from_record(raw)
        if line.is_removed:
            continue
        total += line_amount(line)
    return total


def calculate_active_total(
    lines: Iterable[Any],
    discount_cents: Any = 0,
    tax_cents: Any = 0,
) -> int:
    """
    Currently billable total for a set of service lines.

    Removed lines are skipped, the discount is subtracted and tax added.
    The result may be negative (large discount); callers keep it for display.

    Args:
        lines: Service lines (mappings, ORM rows or ServiceLine values)
        discount_cents: Order discount; None reads as 0
        tax_cents: Order tax; None reads as 0

    Returns:
        Active total in cents
    """
    return calculate_subtotal(lines) - _to_int(discount_cents) + _to_int(tax_cents)


# =============================================================================
# PAYMENT STATUS
# =============================================================================

def calculate_net_paid(payments: Iterable[Any]) -> tuple[int, int]:
    """
    Gross paid and refunded totals over contributing payments.

    A refund larger than its payment is clamped to the payment amount so a
    single bad record cannot push net paid below what the others add up to.

    Returns:
        (total_paid_cents, total_refunded_cents)
    """
    total_paid = 0
    total_refunded = 0
    for raw in payments or ():
        payment = PaymentInfo.from_record(raw)
        if not payment.contributes:
            continue
        refunded = min(max(payment.refunded_amount_cents, 0), max(payment.amount_cents, 0))
        total_paid += payment.amount_cents
        total_refunded += refunded
    return total_paid, total_refunded


def calculate_percentage(active_total_cents: int, net_paid_cents: int) -> int:
    """
    Share of the active total that has been paid, as a whole percent.

    Not capped at 100 (overpayment reads above 100), floored at 0.
    A zero or negative bill reads 0 with no payments and 100 otherwise.
    """
    if active_total_cents <= 0:
        return 100 if net_paid_cents > 0 else 0
    ratio = Decimal(net_paid_cents) * 100 / Decimal(active_total_cents)
    return max(int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 0)


def derive_payment_status(active_total_cents: int, net_paid_cents: int) -> str:
    """
    PAYMENT STATUS (first match wins):
    - overpaid: amount due is negative
    - unpaid: nothing billed and nothing paid ("no charges" is a display label)
    - paid: amount due is zero
    - partial: something paid, something still due
    - unpaid: nothing paid
    """
    amount_due = active_total_cents - net_paid_cents
    if amount_due < 0:
        return PAYMENT_STATUS_OVERPAID
    if active_total_cents == 0 and net_paid_cents == 0:
        return PAYMENT_STATUS_UNPAID
    if amount_due <= 0:
        return PAYMENT_STATUS_PAID
    if net_paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def calculate_payment_status(active_total_cents: Any, payments: Iterable[Any]) -> PaymentSummary:
    """
    Canonical payment summary for an active total and its payment history.

    Pending, failed and cancelled payments are left out of every sum, and so
    are refund transaction rows (their effect is already in
    refunded_amount_cents on the payment they refund).

    Args:
        active_total_cents: Output of calculate_active_total (any integer)
        payments: Payment records (mappings, ORM rows or PaymentInfo values)

    Returns:
        PaymentSummary
    """
    active_total = _to_int(active_total_cents)
    total_paid, total_refunded = calculate_net_paid(payments)
    net_paid = total_paid - total_refunded

    return PaymentSummary(
        active_total_cents=active_total,
        total_paid_cents=total_paid,
        total_refunded_cents=total_refunded,
        net_paid_cents=net_paid,
        amount_due_cents=active_total - net_paid,
        percentage=calculate_percentage(active_total, net_paid),
        payment_status=derive_payment_status(active_total, net_paid),
    )


def summarize_order(
    lines: Iterable[Any],
    payments: Iterable[Any],
    discount_cents: Any = 0,
    tax_cents: Any = 0,
) -> PaymentSummary:
    """Active total and payment status in one call."""
    return calculate_payment_status(
        calculate_active_total(lines, discount_cents, tax_cents),
        payments,
    )


def format_cents(cents: int) -> str:
    """$1,234.56 style display string; negative values keep their sign."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _read(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _to_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return int(_to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _to_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)
    return result if result.is_finite() else Decimal(0)
