"""
Delivery Note Service - shipping documents
"""
import logging
from datetime import date
from typing import Optional

from crm_sales.core.config import settings
from crm_sales.core.exceptions import BusinessRuleViolation, ValidationFailed
from crm_sales.core.tenancy import TenantScopedRepository
from crm_sales.domain import delivery_note as delivery_domain
from crm_sales.domain.delivery_note import DeliveryStatus
from crm_sales.models import DeliveryNote, DeliveryNoteItem, Invoice
from crm_sales.schemas import DeliveryNoteCreate
from crm_sales.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class DeliveryNoteService(DocumentService):
    model = DeliveryNote
    item_model = DeliveryNoteItem
    resource_name = "DeliveryNote"
    aggregate_type = delivery_domain.AGGREGATE_TYPE
    number_field = "delivery_number"
    number_prefix = "DEL"
    projected_fields = (
        "status", "shipping_address", "carrier", "tracking_number", "ship_date", "delivery_date",
        "tax_rate", "subtotal", "tax", "total", "notes",
    )

    def new_aggregate(self, entity_id: int):
        return delivery_domain.new_delivery_note(entity_id)

    def create(self, note_data: DeliveryNoteCreate) -> DeliveryNote:
        self.ensure_company(note_data.company_id)
        if note_data.invoice_id is not None:
            invoice = TenantScopedRepository(self.db, self.tenant, Invoice, "Invoice").get(note_data.invoice_id)
            if invoice.company_id != note_data.company_id:
                raise BusinessRuleViolation(
                    f"Invoice {invoice.invoice_number} bills a different company",
                    code="COMPANY_MISMATCH",
                )
        tax_rate = note_data.tax_rate if note_data.tax_rate is not None else settings.DEFAULT_TAX_RATE
        items = [item.model_dump() for item in note_data.items]
        shipping = note_data.model_dump(include={"shipping_address", "carrier", "tracking_number", "notes"})

        delivery_domain.create(
            self.new_aggregate(0), self.tenant, "DEL-PENDING", note_data.company_id,
            items, tax_rate, note_data.invoice_id, **shipping
        )

        note = self.insert(
            company_id=note_data.company_id,
            invoice_id=note_data.invoice_id,
            status=DeliveryStatus.PENDING.value,
            created_by=self.tenant.user_id,
        )
        aggregate = self.new_aggregate(note.id)
        delivery_domain.create(
            aggregate, self.tenant, note.delivery_number, note_data.company_id,
            items, tax_rate, note_data.invoice_id, **shipping
        )
        return self.save(note, aggregate)

    def update_details(self, note_id: int, expected_version: Optional[int] = None, **changes) -> DeliveryNote:
        note, aggregate = self.load(note_id, expected_version)
        delivery_domain.update_details(aggregate, self.tenant, **changes)
        return self.save(note, aggregate)

    def ship(self, note_id: int, ship_date: date = None, carrier: str = None, tracking_number: str = None,
             expected_version: Optional[int] = None) -> DeliveryNote:
        note, aggregate = self.load(note_id, expected_version)
        delivery_domain.ship(aggregate, self.tenant, ship_date or date.today(), carrier, tracking_number)
        return self.save(note, aggregate)

    def deliver(self, note_id: int, delivery_date: date = None,
                expected_version: Optional[int] = None) -> DeliveryNote:
        note, aggregate = self.load(note_id, expected_version)
        delivery_domain.deliver(aggregate, self.tenant, delivery_date or date.today())
        return self.save(note, aggregate)

    def mark_returned(self, note_id: int, reason: str = None,
                      expected_version: Optional[int] = None) -> DeliveryNote:
        note, aggregate = self.load(note_id, expected_version)
        delivery_domain.mark_returned(aggregate, self.tenant, reason)
        return self.save(note, aggregate)

    def transition(self, note_id: int, status: str, effective_date: date = None, carrier: str = None,
                   tracking_number: str = None, reason: str = None,
                   expected_version: Optional[int] = None) -> DeliveryNote:
        if status == DeliveryStatus.IN_TRANSIT.value:
            return self.ship(note_id, effective_date, carrier, tracking_number, expected_version)
        if status == DeliveryStatus.DELIVERED.value:
            return self.deliver(note_id, effective_date, expected_version)
        if status == DeliveryStatus.RETURNED.value:
            return self.mark_returned(note_id, reason, expected_version)
        raise ValidationFailed(f"Cannot move a delivery note to '{status}'", field="status")
