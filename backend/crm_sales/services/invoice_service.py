"""
Invoice Service - invoice lifecycle and status reconciliation
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from crm_sales.core.config import settings
from crm_sales.core.exceptions import InvalidTransition
from crm_sales.domain import invoice as invoice_domain
from crm_sales.domain.invoice import InvoiceStatus
from crm_sales.models import Invoice, InvoiceItem
from crm_sales.schemas import InvoiceCreate
from crm_sales.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class InvoiceService(DocumentService):
    model = Invoice
    item_model = InvoiceItem
    resource_name = "Invoice"
    aggregate_type = invoice_domain.AGGREGATE_TYPE
    number_field = "invoice_number"
    number_prefix = "INV"
    projected_fields = (
        "status", "due_date", "tax_rate", "subtotal", "tax", "total", "paid_amount", "notes",
    )
    event_templates = {"InvoiceCreated": "invoice_created"}

    def new_aggregate(self, entity_id: int):
        return invoice_domain.new_invoice(entity_id)

    def create(self, invoice_data: InvoiceCreate, quote_id: Optional[int] = None) -> Invoice:
        self.ensure_company(invoice_data.company_id)
        issue_date = invoice_data.issue_date or date.today()
        due_date = invoice_data.due_date or issue_date + timedelta(days=settings.DEFAULT_PAYMENT_TERMS_DAYS)
        tax_rate = invoice_data.tax_rate if invoice_data.tax_rate is not None else settings.DEFAULT_TAX_RATE
        items = [item.model_dump() for item in invoice_data.items]

        invoice_domain.create(
            self.new_aggregate(0), self.tenant, "INV-PENDING", invoice_data.company_id,
            issue_date, due_date, items, tax_rate, quote_id, invoice_data.notes
        )

        invoice = self.insert(
            company_id=invoice_data.company_id,
            quote_id=quote_id,
            issue_date=issue_date,
            status=InvoiceStatus.DRAFT.value,
            created_by=self.tenant.user_id,
        )
        aggregate = self.new_aggregate(invoice.id)
        invoice_domain.create(
            aggregate, self.tenant, invoice.invoice_number, invoice_data.company_id,
            issue_date, due_date, items, tax_rate, quote_id, invoice_data.notes
        )
        return self.save(invoice, aggregate)

    def update_items(self, invoice_id: int, items: List[dict], tax_rate=None,
                     expected_version: Optional[int] = None) -> Invoice:
        from crm_sales.services.allocation_service import AllocationService

        invoice, aggregate = self.load(invoice_id, expected_version)
        allocated = AllocationService(self.db, self.tenant, self.notifier).allocated_to_invoice(invoice_id)
        invoice_domain.update_items(aggregate, self.tenant, items, tax_rate, allocated)
        return self.save(invoice, aggregate)

    def update_details(self, invoice_id: int, expected_version: Optional[int] = None, **changes) -> Invoice:
        invoice, aggregate = self.load(invoice_id, expected_version)
        invoice_domain.update_details(aggregate, self.tenant, **changes)
        return self.save(invoice, aggregate)

    def send(self, invoice_id: int, expected_version: Optional[int] = None) -> Invoice:
        invoice, aggregate = self.load(invoice_id, expected_version)
        invoice_domain.send(aggregate, self.tenant)
        return self.save(invoice, aggregate)

    def cancel(self, invoice_id: int, reason: str = None, expected_version: Optional[int] = None) -> Invoice:
        """Cancel an unpaid invoice and release everything it billed"""
        from crm_sales.services.allocation_service import AllocationService

        invoice, aggregate = self.load(invoice_id, expected_version)
        invoice_domain.cancel(aggregate, self.tenant, reason)
        released = AllocationService(self.db, self.tenant, self.notifier).release_invoice(invoice)
        if released:
            logger.info(f"Invoice {invoice.invoice_number}: released {released} order allocation(s)")
        return self.save(invoice, aggregate)

    def set_status(self, invoice_id: int, status: str, expected_version: Optional[int] = None,
                   today: date = None) -> Invoice:
        """
        Apply a requested status. Once payments exist the ledger decides the
        status and the request is reconciled to it without error.
        """
        invoice, aggregate = self.load(invoice_id, expected_version)
        if invoice_domain.requested_status_is_reconciled(aggregate, status):
            return invoice
        invoice_domain.check_requested_status(aggregate, status)

        if status == aggregate.state.status:
            return invoice
        if status == InvoiceStatus.SENT.value:
            return self.send(invoice_id)
        if status == InvoiceStatus.CANCELLED.value:
            return self.cancel(invoice_id)
        if status == InvoiceStatus.OVERDUE.value:
            invoice_domain.mark_overdue(aggregate, self.tenant, today or date.today())
            return self.save(invoice, aggregate)
        raise InvalidTransition("invoice", aggregate.state.status, status)

    def mark_overdue(self, today: date = None) -> List[Invoice]:
        """Flag sent, unpaid invoices whose due date has passed"""
        today = today or date.today()
        candidates = self.repo.query().filter(
            Invoice.status == InvoiceStatus.SENT.value,
            Invoice.due_date < today
        ).order_by(Invoice.id.asc()).all()

        flagged = []
        for candidate in candidates:
            invoice, aggregate = self.load(candidate.id)
            if not invoice_domain.is_due_for_overdue(aggregate.state, today):
                continue
            invoice_domain.mark_overdue(aggregate, self.tenant, today)
            flagged.append(self.save(invoice, aggregate))
        if flagged:
            logger.info(f"Marked {len(flagged)} invoice(s) overdue for tenant {self.tenant.tenant_id}")
        return flagged
