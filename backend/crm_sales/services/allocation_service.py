"""
Allocation Service - the invoice/order bridge

Each ``invoice_orders`` row records how much of one order one invoice
bills. Sums per order must equal the order's ``invoiced_amount``; sums per
invoice never exceed the invoice total. Locks are always taken invoice
first, then order.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_sales.core.exceptions import BusinessRuleViolation, NotFound, ValidationFailed
from crm_sales.core.money import ZERO, quantize, to_money
from crm_sales.core.tenancy import TenantContext, TenantScopedRepository
from crm_sales.domain import order as order_domain
from crm_sales.domain.invoice import InvoiceStatus
from crm_sales.models import Invoice, InvoiceOrderAllocation, Order
from crm_sales.services.notification_service import Notifier
from crm_sales.services.order_service import OrderService

logger = logging.getLogger(__name__)


class AllocationService:
    def __init__(self, db: Session, tenant: TenantContext, notifier: Notifier = None):
        self.db = db
        self.tenant = tenant
        self.repo = TenantScopedRepository(db, tenant, InvoiceOrderAllocation, "Allocation")
        self.invoices = TenantScopedRepository(db, tenant, Invoice, "Invoice")
        self.orders = OrderService(db, tenant, notifier)

    def list_for_invoice(self, invoice_id: int) -> List[InvoiceOrderAllocation]:
        self.invoices.get(invoice_id)
        return self.repo.query().filter(
            InvoiceOrderAllocation.invoice_id == invoice_id
        ).order_by(InvoiceOrderAllocation.id.asc()).all()

    def list_for_order(self, order_id: int) -> List[InvoiceOrderAllocation]:
        self.orders.get_by_id(order_id)
        return self.repo.query().filter(
            InvoiceOrderAllocation.order_id == order_id
        ).order_by(InvoiceOrderAllocation.id.asc()).all()

    def allocated_to_invoice(self, invoice_id: int, exclude_order_id: int = None) -> Decimal:
        query = self.db.query(func.sum(InvoiceOrderAllocation.amount_allocated)).filter(
            InvoiceOrderAllocation.tenant_id == self.tenant.tenant_id,
            InvoiceOrderAllocation.invoice_id == invoice_id
        )
        if exclude_order_id is not None:
            query = query.filter(InvoiceOrderAllocation.order_id != exclude_order_id)
        return quantize(query.scalar() or ZERO)

    def allocated_to_order(self, order_id: int, exclude_invoice_id: int = None) -> Decimal:
        query = self.db.query(func.sum(InvoiceOrderAllocation.amount_allocated)).filter(
            InvoiceOrderAllocation.tenant_id == self.tenant.tenant_id,
            InvoiceOrderAllocation.order_id == order_id
        )
        if exclude_invoice_id is not None:
            query = query.filter(InvoiceOrderAllocation.invoice_id != exclude_invoice_id)
        return quantize(query.scalar() or ZERO)

    def _find(self, invoice_id: int, order_id: int) -> Optional[InvoiceOrderAllocation]:
        return self.repo.query().filter(
            InvoiceOrderAllocation.invoice_id == invoice_id,
            InvoiceOrderAllocation.order_id == order_id
        ).first()

    def allocate(self, invoice_id: int, order_id: int, amount, expected_version: Optional[int] = None
                 ) -> InvoiceOrderAllocation:
        """
        Set how much of ``order_id`` is billed by ``invoice_id``.
        An existing allocation for the pair is replaced, not added to.
        """
        amount = to_money(amount, "amount")
        if amount <= 0:
            raise ValidationFailed("Allocation amount must be greater than zero", field="amount")

        invoice = self.invoices.get(invoice_id, for_update=True)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise BusinessRuleViolation(f"Invoice {invoice.invoice_number} is cancelled", code="INVOICE_CANCELLED")
        order, aggregate = self.orders.load(order_id, expected_version)
        order_domain.ensure_allocatable(aggregate)
        if order.company_id != invoice.company_id:
            raise BusinessRuleViolation(
                f"Invoice {invoice.invoice_number} and order {order.order_number} bill different companies",
                code="COMPANY_MISMATCH",
            )

        invoice_other = self.allocated_to_invoice(invoice_id, exclude_order_id=order_id)
        if invoice_other + amount > invoice.total:
            raise BusinessRuleViolation(
                f"Allocating {amount} would exceed invoice {invoice.invoice_number} total of {invoice.total}",
                code="ALLOCATION_EXCEEDS_INVOICE_TOTAL",
                details={"amount": str(amount), "allocated": str(invoice_other), "total": str(invoice.total)},
            )
        order_other = self.allocated_to_order(order_id, exclude_invoice_id=invoice_id)
        if order_other + amount > order.total:
            raise BusinessRuleViolation(
                f"Allocating {amount} would exceed order {order.order_number} total of {order.total}",
                code="ALLOCATION_EXCEEDS_ORDER_TOTAL",
                details={"amount": str(amount), "allocated": str(order_other), "total": str(order.total)},
            )

        allocation = self._find(invoice_id, order_id)
        if allocation is None:
            allocation = InvoiceOrderAllocation(invoice_id=invoice_id, order_id=order_id, amount_allocated=amount)
            self.repo.add(allocation)
        else:
            allocation.amount_allocated = amount

        order_domain.set_allocation(aggregate, self.tenant, invoice_id, amount)
        self.orders.save(order, aggregate)
        self.db.flush()
        logger.info(f"Allocated {amount} of {order.order_number} to {invoice.invoice_number}")
        return allocation

    def deallocate(self, invoice_id: int, order_id: int, expected_version: Optional[int] = None) -> None:
        invoice = self.invoices.get(invoice_id, for_update=True)
        allocation = self._find(invoice_id, order_id)
        if allocation is None:
            raise NotFound("Allocation", f"{invoice_id}:{order_id}")
        self._remove(invoice, allocation, expected_version)

    def release_invoice(self, invoice: Invoice) -> int:
        """Remove every allocation of an invoice the caller has already locked"""
        allocations = self.repo.query().filter(
            InvoiceOrderAllocation.invoice_id == invoice.id
        ).order_by(InvoiceOrderAllocation.order_id.asc()).all()
        for allocation in allocations:
            self._remove(invoice, allocation)
        return len(allocations)

    def _remove(self, invoice: Invoice, allocation: InvoiceOrderAllocation, expected_version: Optional[int] = None):
        order, aggregate = self.orders.load(allocation.order_id, expected_version)
        self.db.delete(allocation)
        order_domain.set_allocation(aggregate, self.tenant, invoice.id, ZERO)
        self.orders.save(order, aggregate)
        self.db.flush()
        logger.info(f"Released allocation of {order.order_number} from {invoice.invoice_number}")
