from datetime import date, timedelta

import pytest

from crm_sales.core.exceptions import BusinessRuleViolation, InvalidTransition, ValidationFailed
from crm_sales.schemas import DeliveryNoteCreate
from crm_sales.services.delivery_note_service import DeliveryNoteService
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.workflow_service import WorkflowService

from conftest import line_items


@pytest.fixture
def note(db, ctx, company):
    return DeliveryNoteService(db, ctx).create(
        DeliveryNoteCreate(company_id=company.id, items=line_items(), shipping_address="1 Main St")
    )


class TestDeliveryNotes:
    def test_create(self, note):
        assert note.delivery_number == "DEL-00001"
        assert note.status == "pending"
        assert note.shipping_address == "1 Main St"
        assert len(note.items) == 2
        assert note.version == 1

    def test_ship_and_deliver(self, db, ctx, note):
        service = DeliveryNoteService(db, ctx)
        shipped_on = date(2024, 6, 3)

        note = service.ship(note.id, shipped_on, carrier="DHL", tracking_number="JD0001")
        assert note.status == "in_transit"
        assert note.carrier == "DHL"
        assert note.ship_date == shipped_on

        note = service.deliver(note.id, shipped_on + timedelta(days=2))
        assert note.status == "delivered"
        assert note.delivery_date == date(2024, 6, 5)

    def test_delivery_cannot_precede_shipping(self, db, ctx, note):
        service = DeliveryNoteService(db, ctx)
        service.ship(note.id, date(2024, 6, 3))

        with pytest.raises(ValidationFailed):
            service.deliver(note.id, date(2024, 6, 1))

    def test_return_from_pending(self, db, ctx, note):
        note = DeliveryNoteService(db, ctx).mark_returned(note.id, "Refused at door")

        assert note.status == "returned"

    def test_delivered_is_terminal(self, db, ctx, note):
        service = DeliveryNoteService(db, ctx)
        service.ship(note.id)
        service.deliver(note.id)

        with pytest.raises(InvalidTransition):
            service.mark_returned(note.id)
        with pytest.raises(BusinessRuleViolation) as exc:
            service.update_details(note.id, carrier="UPS")
        assert exc.value.code == "DOCUMENT_LOCKED"

    def test_update_details_while_open(self, db, ctx, note):
        note = DeliveryNoteService(db, ctx).update_details(note.id, tracking_number="1Z999", ignored="x")

        assert note.tracking_number == "1Z999"
        assert note.version == 2

    def test_transition_dispatch(self, db, ctx, note):
        service = DeliveryNoteService(db, ctx)

        note = service.transition(note.id, "in_transit", effective_date=date(2024, 6, 3), carrier="FedEx")
        assert note.status == "in_transit"

        with pytest.raises(ValidationFailed):
            service.transition(note.id, "pending")


class TestFromInvoice:
    def test_copies_invoice_items(self, db, ctx, make_invoice):
        invoice = make_invoice(send=True)
        note = WorkflowService(db, ctx).convert_invoice_to_delivery_note(invoice.id, carrier="DHL")

        assert note.invoice_id == invoice.id
        assert note.company_id == invoice.company_id
        assert note.total == invoice.total
        assert note.carrier == "DHL"

    def test_cancelled_invoice_does_not_ship(self, db, ctx, make_invoice):
        invoice = make_invoice()
        InvoiceService(db, ctx).cancel(invoice.id)

        with pytest.raises(BusinessRuleViolation) as exc:
            WorkflowService(db, ctx).convert_invoice_to_delivery_note(invoice.id)
        assert exc.value.code == "INVOICE_CANCELLED"

    def test_invoice_must_bill_same_company(self, db, ctx, make_invoice, second_company):
        invoice = make_invoice()

        with pytest.raises(BusinessRuleViolation) as exc:
            DeliveryNoteService(db, ctx).create(
                DeliveryNoteCreate(company_id=second_company.id, invoice_id=invoice.id, items=line_items())
            )
        assert exc.value.code == "COMPANY_MISMATCH"
