from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from crm_sales.core.exceptions import BusinessRuleViolation, ValidationFailed
from crm_sales.models import Payment
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.payment_service import PaymentService


class TestRecordPayment:
    def test_partial_then_full(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)

        first = payments.record_payment(invoice.id, Decimal("50.00"), payment_method="card", reference="R-1")
        assert first.status == "completed"
        assert first.payment_number == "PAY-00001"
        assert first.recorded_by == 7
        assert invoice.paid_amount == Decimal("50.00")
        assert invoice.status == "partial"

        payments.record_payment(invoice.id, "69.90")
        assert invoice.paid_amount == Decimal("119.90")
        assert invoice.status == "paid"

    def test_overpayment_is_refused_without_writes(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        payments.record_payment(invoice.id, Decimal("100.00"))

        with pytest.raises(BusinessRuleViolation) as exc:
            payments.record_payment(invoice.id, Decimal("19.91"))

        assert exc.value.code == "OVERPAYMENT"
        assert exc.value.details["balance_due"] == "19.90"
        assert invoice.paid_amount == Decimal("100.00")
        assert db.query(Payment).count() == 1

    def test_paid_invoice_takes_no_more_money(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        payments.record_payment(invoice.id, Decimal("119.90"))

        with pytest.raises(BusinessRuleViolation) as exc:
            payments.record_payment(invoice.id, Decimal("0.01"))
        assert exc.value.code == "OVERPAYMENT"

    @pytest.mark.parametrize("amount", ["0", "-5", "10.005"])
    def test_invalid_amounts(self, db, ctx, make_invoice, amount):
        invoice = make_invoice(send=True)

        with pytest.raises(ValidationFailed):
            PaymentService(db, ctx).record_payment(invoice.id, amount)

    def test_unknown_method(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)

        with pytest.raises(ValidationFailed):
            PaymentService(db, ctx).record_payment(invoice.id, "10", payment_method="barter")

    def test_zero_total_invoice(self, db, ctx, make_invoice):
        invoice = make_invoice(items=[])

        with pytest.raises(BusinessRuleViolation) as exc:
            PaymentService(db, ctx).record_payment(invoice.id, "1.00")
        assert exc.value.code == "INVOICE_HAS_NO_BALANCE"

    def test_cancelled_invoice(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        InvoiceService(db, ctx).cancel(invoice.id, "Duplicate")

        with pytest.raises(BusinessRuleViolation) as exc:
            PaymentService(db, ctx).record_payment(invoice.id, "1.00")
        assert exc.value.code == "INVOICE_CANCELLED"

    def test_invoice_with_payments_cannot_be_cancelled(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        PaymentService(db, ctx).record_payment(invoice.id, "1.00")

        with pytest.raises(BusinessRuleViolation) as exc:
            InvoiceService(db, ctx).cancel(invoice.id)
        assert exc.value.code == "INVOICE_HAS_PAYMENTS"

    def test_paid_invoice_items_are_locked(self, db, ctx, make_invoice):
        invoice = make_invoice()
        PaymentService(db, ctx).record_payment(invoice.id, "1.00")

        with pytest.raises(BusinessRuleViolation) as exc:
            InvoiceService(db, ctx).update_items(invoice.id, [])
        assert exc.value.code == "DOCUMENT_LOCKED"


class TestReversals:
    def test_refund_restores_balance(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        payment = payments.record_payment(invoice.id, "119.90")
        assert invoice.status == "paid"

        payment = payments.refund(payment.id)

        assert payment.status == "refunded"
        assert payment.refunded_at.tzinfo is None
        assert datetime.now(timezone.utc).replace(tzinfo=None) - payment.refunded_at < timedelta(minutes=1)
        assert invoice.paid_amount == Decimal("0.00")
        assert invoice.status == "sent"

    def test_refund_only_completed(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        payment = payments.record_payment(invoice.id, "10.00")
        payments.refund(payment.id)

        with pytest.raises(BusinessRuleViolation) as exc:
            payments.refund(payment.id)
        assert exc.value.code == "PAYMENT_NOT_COMPLETED"

    def test_refund_then_pay_again(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        payments.refund(payments.record_payment(invoice.id, "119.90").id)

        payments.record_payment(invoice.id, "119.90")

        assert invoice.status == "paid"

    def test_delete_completed_payment(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        payments = PaymentService(db, ctx)
        keep = payments.record_payment(invoice.id, "20.00")
        drop = payments.record_payment(invoice.id, "30.00")

        payments.delete(drop.id)

        assert invoice.paid_amount == Decimal("20.00")
        assert [p.id for p in payments.list_for_invoice(invoice.id)] == [keep.id]

    def test_delete_failed_payment_has_no_balance_effect(self, db, ctx, tenant, make_invoice):
        invoice = make_invoice(send=True)
        failed = Payment(
            payment_number="PAY-09999", payment_date=date.today(), amount=Decimal("5.00"),
            status="failed", invoice_id=invoice.id, tenant_id=tenant.id,
        )
        db.add(failed)
        db.flush()
        version = invoice.version

        PaymentService(db, ctx).delete(failed.id)

        assert db.get(Payment, failed.id) is None
        assert invoice.version == version
        assert invoice.paid_amount == Decimal("0.00")


def test_summary(db, ctx, make_invoice):
    invoice = make_invoice(send=True)
    payments = PaymentService(db, ctx)
    payments.record_payment(invoice.id, "40.00")
    payments.refund(payments.record_payment(invoice.id, "10.00").id)

    summary = payments.summary(invoice.id)

    assert summary["paid_amount"] == Decimal("40.00")
    assert summary["remaining"] == Decimal("79.90")
    assert summary["payment_count"] == 2
    assert summary["by_status"] == {"completed": 1, "refunded": 1}
    assert summary["status"] == "partial"
