"""
Payment service tests: recording, processor callbacks, refunds, and invoice
status derived from the payment engine.
"""

import pytest

from stitchdesk.models import Invoice, Payment, Refund
from stitchdesk.services import garment_service, payment_service
from stitchdesk.services.payment_service import PaymentError

from conftest import garment_named, service_named


@pytest.fixture
def invoice(db_session, order):
    return db_session.query(Invoice).filter_by(order_id=order.id).one()


class TestRecordPayment:
    def test_cash_payment_completes_immediately(self, db_session, order, invoice):
        payment = payment_service.record_payment(invoice.id, "cash", 5000, payment_type="deposit")

        assert payment.status == "completed"
        assert payment.processed_at is not None
        assert db_session.get(Invoice, invoice.id).status == "partially_paid"

        balance = payment_service.get_order_balance(order.id)
        assert balance["paid_amount_cents"] == 5000
        assert balance["balance_due_cents"] == 7500
        assert balance["payment_status"] == "partial"
        assert balance["percentage"] == 40

    def test_card_payment_waits_for_processor(self, db_session, order, invoice):
        payment = payment_service.record_payment(invoice.id, "card", 12500)

        assert payment.status == "pending"
        assert payment_service.get_order_balance(order.id)["payment_status"] == "unpaid"

        payment_service.complete_payment(payment.id, external_reference="ch_123")
        assert db_session.get(Payment, payment.id).external_reference == "ch_123"
        assert db_session.get(Invoice, invoice.id).status == "paid"

    def test_failed_payment_never_counts(self, db_session, order, invoice):
        payment = payment_service.record_payment(invoice.id, "card", 12500)
        failed = payment_service.fail_payment(payment.id, reason="card_declined")

        assert failed.status == "failed"
        assert failed.failure_reason == "card_declined"
        assert payment_service.get_order_balance(order.id)["balance_due_cents"] == 12500
        assert db_session.get(Invoice, invoice.id).status == "pending"

    def test_only_pending_payments_resolve(self, db_session, invoice):
        payment = payment_service.record_payment(invoice.id, "cash", 1000)

        with pytest.raises(PaymentError) as exc:
            payment_service.cancel_payment(payment.id)
        assert exc.value.status_code == 409

    def test_overpayment_is_credit(self, db_session, order, invoice):
        payment_service.record_payment(invoice.id, "check", 15000)

        balance = payment_service.get_order_balance(order.id)
        assert balance["payment_status"] == "overpaid"
        assert balance["credit_cents"] == 2500
        assert balance["amount_due_cents"] == -2500
        assert db_session.get(Invoice, invoice.id).status == "paid"

    @pytest.mark.parametrize("method,amount", [("bitcoin", 100), ("cash", 0), ("cash", -5)])
    def test_invalid_payment_rejected(self, db_session, invoice, method, amount):
        with pytest.raises(PaymentError) as exc:
            payment_service.record_payment(invoice.id, method, amount)
        assert exc.value.status_code == 400

    def test_unknown_invoice(self, db_session):
        with pytest.raises(PaymentError) as exc:
            payment_service.record_payment(999999, "cash", 100)
        assert exc.value.status_code == 404


class TestRefunds:
    def test_partial_then_full_refund(self, db_session, order, invoice):
        payment = payment_service.record_payment(invoice.id, "cash", 10000)

        refund = payment_service.refund_payment(payment.id, 3000, reason="Hem removed")
        assert refund.refund_type == "partial"
        assert db_session.get(Payment, payment.id).status == "partially_refunded"

        balance = payment_service.get_order_balance(order.id)
        assert balance["paid_amount_cents"] == 7000
        assert balance["balance_due_cents"] == 5500

        payment_service.refund_payment(payment.id, 7000)
        refreshed = db_session.get(Payment, payment.id)
        assert refreshed.status == "refunded"
        assert refreshed.refunded_amount_cents == 10000
        assert db_session.get(Invoice, invoice.id).status == "pending"

    def test_refund_above_remaining_rejected(self, db_session, invoice):
        payment = payment_service.record_payment(invoice.id, "cash", 5000)
        payment_service.refund_payment(payment.id, 4000)

        with pytest.raises(PaymentError) as exc:
            payment_service.refund_payment(payment.id, 1001)
        assert exc.value.status_code == 409
        assert exc.value.details["remaining_refundable_cents"] == 1000
        assert db_session.query(Refund).filter_by(payment_id=payment.id).count() == 1

    def test_cannot_refund_pending_payment(self, db_session, invoice):
        payment = payment_service.record_payment(invoice.id, "card", 5000)

        with pytest.raises(PaymentError) as exc:
            payment_service.refund_payment(payment.id, 100)
        assert exc.value.status_code == 409

    def test_history_lists_refund_rows_without_double_counting(self, db_session, order, invoice):
        payment = payment_service.record_payment(invoice.id, "cash", 10000)
        payment_service.refund_payment(payment.id, 2500)

        history = payment_service.get_invoice_payment_history(invoice.id)
        assert [row["type"] for row in history] == ["payment", "refund"]
        assert history[1]["amount_cents"] == -2500

        summary = payment_service.get_invoice_summary(invoice.id)["summary"]
        assert summary["net_paid_cents"] == 7500


class TestInvoiceSync:
    def test_invoice_status_follows_service_changes(self, db_session, order, invoice):
        payment_service.record_payment(invoice.id, "cash", 8500)
        assert db_session.get(Invoice, invoice.id).status == "partially_paid"

        dress = garment_named(order, "Dress")
        garment_service.remove_service(dress.id, service_named(dress, "Hem").id)

        refreshed = db_session.get(Invoice, invoice.id)
        assert refreshed.amount_cents == 8500
        assert refreshed.status == "paid"

    def test_discount_and_tax_apply_to_invoice(self, db_session):
        from stitchdesk.services import order_service

        created = order_service.create_order({
            "client_name": "Discounted",
            "discount_cents": 1000,
            "tax_cents": 250,
            "garments": [{"name": "Shirt", "services": [{"name": "Collar", "unit_price_cents": 5000}]}],
        })
        invoice = db_session.query(Invoice).filter_by(order_id=created.id).one()
        assert invoice.amount_cents == 4250
        assert payment_service.get_order_balance(created.id)["order_total_cents"] == 4250
