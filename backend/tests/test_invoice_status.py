from datetime import date, timedelta
from decimal import Decimal

import pytest

from crm_sales.core.exceptions import BusinessRuleViolation, InvalidTransition, ValidationFailed
from crm_sales.domain.invoice import derive_invoice_status
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.payment_service import PaymentService

DUE = date(2024, 1, 31)


@pytest.mark.parametrize("lifecycle, total, paid, due_date, today, expected", [
    ("cancelled", "100", "100", DUE, date(2024, 3, 1), "cancelled"),
    ("sent", "100", "100", DUE, date(2024, 3, 1), "paid"),
    ("draft", "100", "100", None, None, "paid"),
    ("sent", "100", "40", DUE, date(2024, 3, 1), "partial"),
    ("sent", "100", "0", DUE, date(2024, 2, 1), "overdue"),
    ("sent", "100", "0", DUE, DUE, "sent"),
    ("draft", "100", "0", DUE, date(2024, 3, 1), "draft"),
    ("sent", "0", "0", DUE, date(2024, 3, 1), "sent"),
    ("sent", "100", "0", None, date(2024, 3, 1), "sent"),
])
def test_derive_invoice_status(lifecycle, total, paid, due_date, today, expected):
    assert derive_invoice_status(lifecycle, Decimal(total), Decimal(paid), due_date, today) == expected


def test_derivation_is_idempotent():
    args = ("sent", Decimal("119.90"), Decimal("19.90"), DUE, date(2024, 2, 1))

    assert derive_invoice_status(*args) == derive_invoice_status(*args) == "partial"


class TestRequestedStatus:
    def test_draft_to_sent(self, db, ctx, make_invoice):
        invoice = make_invoice()
        invoice = InvoiceService(db, ctx).set_status(invoice.id, "sent")

        assert invoice.status == "sent"
        assert invoice.version == 2

    def test_same_status_is_a_no_op(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        invoice = InvoiceService(db, ctx).set_status(invoice.id, "sent")

        assert invoice.version == 2

    def test_sent_back_to_draft_is_refused(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)

        with pytest.raises(InvalidTransition):
            InvoiceService(db, ctx).set_status(invoice.id, "draft")

    @pytest.mark.parametrize("status", ["paid", "partial"])
    def test_ledger_statuses_cannot_be_requested(self, db, ctx, make_invoice, status):
        invoice = make_invoice(send=True)

        with pytest.raises(InvalidTransition):
            InvoiceService(db, ctx).set_status(invoice.id, status)

    def test_unknown_status(self, db, ctx, make_invoice):
        invoice = make_invoice()

        with pytest.raises(ValidationFailed):
            InvoiceService(db, ctx).set_status(invoice.id, "archived")

    def test_ledger_wins_once_money_is_received(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        PaymentService(db, ctx).record_payment(invoice.id, Decimal("50.00"))
        version = invoice.version

        invoice = InvoiceService(db, ctx).set_status(invoice.id, "cancelled")

        assert invoice.status == "partial"
        assert invoice.version == version

    def test_cancel_through_status_request(self, db, ctx, make_invoice):
        invoice = make_invoice()
        invoice = InvoiceService(db, ctx).set_status(invoice.id, "cancelled")

        assert invoice.status == "cancelled"


class TestOverdue:
    def test_sweep_flags_sent_invoices_past_due(self, db, ctx, make_invoice):
        today = date.today()
        due = make_invoice(send=True, issue_date=today, due_date=today + timedelta(days=10))
        draft = make_invoice(issue_date=today, due_date=today + timedelta(days=10))
        paid_part = make_invoice(send=True, issue_date=today, due_date=today + timedelta(days=10))
        PaymentService(db, ctx).record_payment(paid_part.id, Decimal("10.00"))

        service = InvoiceService(db, ctx)
        assert service.mark_overdue(today + timedelta(days=5)) == []

        flagged = service.mark_overdue(today + timedelta(days=11))

        assert [invoice.id for invoice in flagged] == [due.id]
        assert due.status == "overdue"
        assert draft.status == "draft"
        assert paid_part.status == "partial"
        assert [e.event_type for e in service.history(due.id)][-1] == "InvoiceMarkedOverdue"

    def test_overdue_request_before_due_date_is_refused(self, db, ctx, make_invoice):
        today = date.today()
        invoice = make_invoice(send=True, issue_date=today, due_date=today + timedelta(days=10))

        with pytest.raises(BusinessRuleViolation) as exc:
            InvoiceService(db, ctx).set_status(invoice.id, "overdue", today=today)
        assert exc.value.code == "INVOICE_NOT_OVERDUE"

    def test_overdue_invoice_still_takes_payment(self, db, ctx, make_invoice):
        today = date.today()
        invoice = make_invoice(send=True, issue_date=today, due_date=today + timedelta(days=1))
        InvoiceService(db, ctx).mark_overdue(today + timedelta(days=2))

        PaymentService(db, ctx).record_payment(invoice.id, Decimal("119.90"))

        assert invoice.status == "paid"
        assert invoice.paid_amount == Decimal("119.90")
